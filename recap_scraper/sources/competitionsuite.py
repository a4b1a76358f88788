import json
import re

import structlog

from recap_scraper.config import BRIDGE_URL, RECAP_URL_TEMPLATE
from recap_scraper.exceptions import NetworkError, StructureError
from recap_scraper.models import SourceEvent
from recap_scraper.scraper import Scraper
from recap_scraper.sources.base_source import BaseSource

logger = structlog.get_logger(__name__)

# callback({...}); as served by the jsonp endpoint
JSONP_PATTERN = re.compile(r"^\s*[\w$.]+\s*\((.*)\)\s*;?\s*$", re.DOTALL)


def unwrap_jsonp(text: str) -> dict:
    """Decodes a JSON or JSONP response body."""
    match = JSONP_PATTERN.match(text)
    payload = match.group(1) if match else text
    return json.loads(payload)


class CompetitionSuiteSource(BaseSource):
    """Source implementation for the CompetitionSuite season listing."""

    def __init__(self, name: str, season: str, scraper: Scraper | None = None):
        """Initializes the CompetitionSuiteSource.

        Args:
            name: Circuit name recorded as the event source (e.g. "WGI").
            season: Season to list, as the bridge expects it (e.g. "2025").
            scraper: An optional shared Scraper instance.
        """
        self.name = name
        self.season = season
        self.scraper = scraper or Scraper()

    def fetch_event_list(self) -> list[SourceEvent]:
        """Lists the season's competitions that have a recap page.

        Raises:
            NetworkError: If the listing cannot be fetched.
            StructureError: If the listing is neither JSON nor JSONP.
        """
        logger.info("scraping_source", source=self.name, season=self.season)

        response = self.scraper.get(BRIDGE_URL, params={"season": self.season})
        if not response:
            logger.error("event_list_fetch_failed", source=self.name)
            raise NetworkError(
                f"Failed to fetch the {self.season} season listing for {self.name}",
                url=BRIDGE_URL,
            )

        try:
            data = unwrap_jsonp(response.text)
        except ValueError as e:
            logger.error("event_list_invalid", source=self.name, error=str(e))
            raise StructureError(
                f"Season listing for {self.name} is not valid JSON: {e}",
                error_data={"url": BRIDGE_URL, "season": self.season},
            ) from e

        events = []
        for competition in data.get("competitions") or []:
            guid = competition.get("competitionGuid")
            if not guid:
                continue
            name = (
                competition.get("competitionName") or competition.get("name") or guid
            )
            events.append(
                SourceEvent(
                    name=str(name).strip(),
                    source=self.name,
                    recap_url=RECAP_URL_TEMPLATE.format(guid=guid),
                )
            )

        logger.info("events_found", count=len(events), source=self.name)
        return events
