from abc import ABC, abstractmethod

from recap_scraper.models import SourceEvent


class BaseSource(ABC):
    """Abstract base class for recap sources."""

    name: str

    @abstractmethod
    def fetch_event_list(self) -> list[SourceEvent]:
        """Fetches the list of events that have a published recap.

        Returns:
            A list of SourceEvent objects, one per recap page.
        """
        pass
