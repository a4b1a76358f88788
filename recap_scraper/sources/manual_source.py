import logging
import os

import yaml

from recap_scraper.models import SourceEvent
from recap_scraper.sources.base_source import BaseSource

logger = logging.getLogger(__name__)


class ManualSource(BaseSource):
    """Source for manually listed recap pages from a YAML file.

    The file holds a list of events, either at the top level or under an
    ``events`` key:

        events:
          - name: SCPA Championships
            recap_url: https://recaps.competitionsuite.com/abc.htm
    """

    def __init__(self, name: str, path: str):
        """Initializes the ManualSource.

        Args:
            name: Circuit name recorded as the event source.
            path: Path to the YAML file.
        """
        self.name = name
        self.path = path

    def fetch_event_list(self) -> list[SourceEvent]:
        if not os.path.exists(self.path):
            logger.warning(f"Manual events file not found: {self.path}")
            return []

        with open(self.path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or []

        if isinstance(data, dict):
            data = data.get("events") or []

        events: list[SourceEvent] = []
        for entry in data:
            if not isinstance(entry, dict) or not entry.get("recap_url"):
                logger.warning(f"Skipping manual entry without recap_url: {entry!r}")
                continue
            recap_url = str(entry["recap_url"])
            if recap_url.startswith("file://"):
                # Relative file URLs resolve against the YAML file
                file_path = recap_url.removeprefix("file://")
                if not os.path.isabs(file_path):
                    base = os.path.dirname(os.path.abspath(self.path))
                    recap_url = f"file://{os.path.join(base, file_path)}"
            events.append(
                SourceEvent(
                    name=str(entry.get("name") or "").strip(),
                    source=str(entry.get("source") or self.name),
                    recap_url=recap_url,
                )
            )

        logger.info(f"Loaded {len(events)} manual events from {self.path}")
        return events
