import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from recap_scraper.config import BRIDGE_URL
from recap_scraper.exceptions import NetworkError, StructureError
from recap_scraper.models import SourceEvent
from recap_scraper.sources.competitionsuite import CompetitionSuiteSource, unwrap_jsonp
from recap_scraper.sources.manual_source import ManualSource

COMPETITIONS = {
    "competitions": [
        {"competitionGuid": "abc-123", "competitionName": " WGI Dayton Regional "},
        {"competitionGuid": "def-456", "name": "WGI Indy Regional"},
        {"competitionName": "No guid, no recap"},
    ]
}


def bridge_response(text: str) -> MagicMock:
    response = MagicMock()
    response.text = text
    return response


class TestUnwrapJsonp:
    def test_plain_json(self) -> None:
        assert unwrap_jsonp('{"a": 1}') == {"a": 1}

    def test_callback_wrapper(self) -> None:
        assert unwrap_jsonp('jQuery123_456({"a": [1, 2]});') == {"a": [1, 2]}

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            unwrap_jsonp("callback(not json)")


class TestCompetitionSuiteSource:
    def test_fetch_event_list(self) -> None:
        scraper = MagicMock()
        scraper.get.return_value = bridge_response(f"cb({json.dumps(COMPETITIONS)})")
        source = CompetitionSuiteSource("WGI", "2025", scraper=scraper)

        events = source.fetch_event_list()

        scraper.get.assert_called_once_with(BRIDGE_URL, params={"season": "2025"})
        assert events == [
            SourceEvent(
                name="WGI Dayton Regional",
                source="WGI",
                recap_url="https://recaps.competitionsuite.com/abc-123.htm",
            ),
            SourceEvent(
                name="WGI Indy Regional",
                source="WGI",
                recap_url="https://recaps.competitionsuite.com/def-456.htm",
            ),
        ]

    def test_failed_request_raises(self) -> None:
        scraper = MagicMock()
        scraper.get.return_value = None

        with pytest.raises(NetworkError) as exc_info:
            CompetitionSuiteSource("WGI", "2025", scraper=scraper).fetch_event_list()

        assert exc_info.value.url == BRIDGE_URL

    def test_invalid_body_raises(self) -> None:
        scraper = MagicMock()
        scraper.get.return_value = bridge_response("<html>maintenance</html>")

        with pytest.raises(StructureError):
            CompetitionSuiteSource("WGI", "2025", scraper=scraper).fetch_event_list()


class TestManualSource:
    def test_events_key(self, tmp_path: Path) -> None:
        path = tmp_path / "scpa.yaml"
        path.write_text(
            "events:\n"
            "  - name: SCPA Championships\n"
            "    recap_url: https://recaps.competitionsuite.com/scpa.htm\n"
            "  - name: Missing url\n"
            "  - name: Guest show\n"
            "    source: Guest\n"
            "    recap_url: https://recaps.competitionsuite.com/guest.htm\n",
            encoding="utf-8",
        )

        events = ManualSource("SCPA", str(path)).fetch_event_list()

        assert [(e.name, e.source) for e in events] == [
            ("SCPA Championships", "SCPA"),
            ("Guest show", "Guest"),
        ]

    def test_top_level_list_and_relative_file_url(self, tmp_path: Path) -> None:
        path = tmp_path / "local.yaml"
        path.write_text("- recap_url: file://pages/finals.htm\n", encoding="utf-8")

        events = ManualSource("Local", str(path)).fetch_event_list()

        assert len(events) == 1
        assert events[0].name == ""
        assert events[0].recap_url == f"file://{tmp_path / 'pages' / 'finals.htm'}"

    def test_absolute_file_url_is_kept(self, tmp_path: Path) -> None:
        path = tmp_path / "local.yaml"
        path.write_text("- recap_url: file:///srv/recaps/finals.htm\n", encoding="utf-8")

        events = ManualSource("Local", str(path)).fetch_event_list()

        assert events[0].recap_url == "file:///srv/recaps/finals.htm"

    def test_missing_file(self, tmp_path: Path) -> None:
        assert ManualSource("SCPA", str(tmp_path / "nope.yaml")).fetch_event_list() == []
