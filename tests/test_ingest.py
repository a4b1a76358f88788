from unittest.mock import MagicMock

import pytest

from recap_scraper.exceptions import (
    NetworkError,
    ParseJobError,
    PoolShutdownError,
    WorkerError,
)
from recap_scraper.ingest import IngestItem, IngestReport, build_candidate, run_ingestion
from recap_scraper.models import SourceEvent
from recap_scraper.sources.competitionsuite import CompetitionSuiteSource
from recap_scraper.storage import EVENTS, MemoryStore
from recap_scraper.uploader import EventUploader
from tests.fakes import FakePool, FakeSource, make_recap

DAYTON = "https://recaps.competitionsuite.com/dayton.htm"
INDY = "https://recaps.competitionsuite.com/indy.htm"


def source_event(name: str, url: str) -> SourceEvent:
    return SourceEvent(name=name, source="WGI", recap_url=url)


@pytest.fixture
def uploader(store: MemoryStore) -> EventUploader:
    return EventUploader(store)


def test_ingests_every_listed_event(store: MemoryStore, uploader: EventUploader) -> None:
    source = FakeSource(
        "WGI",
        [source_event("Dayton Regional", DAYTON), source_event("Indy Regional", INDY)],
    )
    pool = FakePool(
        {
            DAYTON: [make_recap(rows=[("Saratoga HS World", 92.2)])],
            INDY: [make_recap(rows=[("Centerville HS", 89.1)])],
        }
    )

    report = run_ingestion([source], pool, uploader)

    assert pool.enqueued == [DAYTON, INDY]
    assert report.succeeded == 2
    assert report.failed == 0
    assert report.exit_code() == 0
    assert sorted(d.data["name"] for d in store.collection(EVENTS).all()) == [
        "Dayton Regional",
        "Indy Regional",
    ]
    assert {item.status for item in report.items} == {"created"}


@pytest.mark.parametrize(
    "error",
    [
        ParseJobError("timeout", job_id="1", url=DAYTON),
        WorkerError("Worker 0 exited with code -9", slot=0, exit_code=-9),
    ],
)
def test_failed_job_falls_back_to_direct_parse(
    store: MemoryStore, uploader: EventUploader, error: Exception
) -> None:
    source = FakeSource("WGI", [source_event("Dayton Regional", DAYTON)])
    fallback = MagicMock(return_value=[make_recap()])

    report = run_ingestion([source], FakePool({DAYTON: error}), uploader, fallback=fallback)

    fallback.assert_called_once_with(DAYTON)
    assert report.succeeded == 1
    assert len(store.collection(EVENTS).all()) == 1


def test_fallback_failure_marks_item_failed(uploader: EventUploader) -> None:
    source = FakeSource("WGI", [source_event("Dayton Regional", DAYTON)])
    fallback = MagicMock(side_effect=NetworkError("Failed to fetch", url=DAYTON))

    report = run_ingestion(
        [source], FakePool({DAYTON: ParseJobError("boom")}), uploader, fallback=fallback
    )

    assert report.failed == 1
    assert report.items[0].error == "Failed to fetch"
    assert report.exit_code() == 1


def test_shutdown_rejection_is_not_retried(uploader: EventUploader) -> None:
    source = FakeSource("WGI", [source_event("Dayton Regional", DAYTON)])
    fallback = MagicMock()

    report = run_ingestion(
        [source], FakePool({DAYTON: PoolShutdownError()}), uploader, fallback=fallback
    )

    fallback.assert_not_called()
    assert report.failed == 1


def test_failing_source_does_not_stop_others(uploader: EventUploader) -> None:
    broken = FakeSource("SCPA", error=RuntimeError("listing page changed"))
    working = FakeSource("WGI", [source_event("Dayton Regional", DAYTON)])

    report = run_ingestion(
        [broken, working], FakePool({DAYTON: [make_recap()]}), uploader
    )

    assert report.source_errors == ["SCPA: listing page changed"]
    assert report.succeeded == 1


def test_only_failing_sources_exit_non_zero(uploader: EventUploader) -> None:
    scraper = MagicMock()
    scraper.get.return_value = None
    bridge = CompetitionSuiteSource("WGI", "2025", scraper=scraper)
    broken = FakeSource("SCPA", error=RuntimeError("listing page changed"))

    report = run_ingestion([bridge, broken], FakePool({}), uploader)

    assert report.items == []
    assert report.source_errors == [
        "WGI: Failed to fetch the 2025 season listing for WGI",
        "SCPA: listing page changed",
    ]
    assert report.exit_code() == 1


def test_empty_season_exits_zero(uploader: EventUploader) -> None:
    report = run_ingestion([FakeSource("WGI", [])], FakePool({}), uploader)

    assert report.exit_code() == 0


def test_untracked_only_event_counts_as_skipped(uploader: EventUploader) -> None:
    source = FakeSource("WGI", [source_event("Guard Regional", DAYTON)])
    pool = FakePool({DAYTON: [make_recap(division="Color Guard Scholastic A")]})

    report = run_ingestion([source], pool, uploader)

    assert report.skipped == 1
    assert report.succeeded == 1
    assert report.exit_code() == 0


def test_build_candidate_uses_recap_event_name() -> None:
    recap = make_recap()

    candidate = build_candidate(source_event("", DAYTON), [recap])

    assert candidate.name == "WGI Dayton Regional"
    assert candidate.date == "Saturday, March 15, 2025"
    assert candidate.recaps == [recap]


class TestExitCode:
    def test_no_items(self) -> None:
        assert IngestReport().exit_code() == 0

    def test_all_failed(self) -> None:
        report = IngestReport(items=[IngestItem("a", "WGI", DAYTON, status="failed")])
        assert report.exit_code() == 1

    def test_source_errors_without_items(self) -> None:
        report = IngestReport(source_errors=["WGI: down"])
        assert report.exit_code() == 1

    def test_partial_success(self) -> None:
        report = IngestReport(
            items=[
                IngestItem("a", "WGI", DAYTON, status="failed"),
                IngestItem("b", "WGI", INDY, status="updated"),
            ]
        )
        assert report.exit_code() == 0
