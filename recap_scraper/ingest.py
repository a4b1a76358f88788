"""One ingestion run: list events, parse their recaps, merge into the store."""

from collections.abc import Callable, Iterable
from concurrent.futures import Future, as_completed
from dataclasses import dataclass, field

import structlog

from recap_scraper.exceptions import (
    ParseJobError,
    PoolShutdownError,
    RecapError,
    WorkerError,
)
from recap_scraper.models import CandidateEvent, ParsedRecap, SourceEvent
from recap_scraper.pool import RecapPool
from recap_scraper.sources.base_source import BaseSource
from recap_scraper.uploader import EventUploader, UploadStatus
from recap_scraper.worker import fetch_recaps

logger = structlog.get_logger(__name__)


@dataclass
class IngestItem:
    name: str
    source: str
    recap_url: str
    status: str
    event_id: str | None = None
    error: str | None = None


@dataclass
class IngestReport:
    items: list[IngestItem] = field(default_factory=list)
    source_errors: list[str] = field(default_factory=list)

    def count(self, *statuses: str) -> int:
        return sum(1 for item in self.items if item.status in statuses)

    @property
    def succeeded(self) -> int:
        return self.count(
            UploadStatus.CREATED.value,
            UploadStatus.UPDATED.value,
            UploadStatus.SKIPPED.value,
        )

    @property
    def failed(self) -> int:
        return self.count(UploadStatus.FAILED.value)

    @property
    def skipped(self) -> int:
        return self.count(UploadStatus.SKIPPED.value)

    def exit_code(self) -> int:
        """Non-zero when something failed and nothing succeeded.

        A run whose sources all failed to list counts as failed too.
        """
        if self.succeeded == 0 and (self.items or self.source_errors):
            return 1
        return 0


def list_events(sources: Iterable[BaseSource], report: IngestReport) -> list[SourceEvent]:
    """Collects the event lists of all sources; a failing source is skipped."""
    events: list[SourceEvent] = []
    for source in sources:
        try:
            events.extend(source.fetch_event_list())
        except Exception as e:
            error = e.message if isinstance(e, RecapError) else str(e)
            logger.error("source_failed", source=source.name, error=error)
            report.source_errors.append(f"{source.name}: {error}")
    return events


def build_candidate(event: SourceEvent, recaps: list[ParsedRecap]) -> CandidateEvent:
    name = event.name
    if not name:
        name = next((r.event_name for r in recaps if r.event_name), event.recap_url)
    return CandidateEvent(
        name=name,
        source=event.source,
        recap_url=event.recap_url,
        recaps=recaps,
        date=recaps[0].date if recaps else None,
    )


def _resolve(
    future: Future,
    event: SourceEvent,
    fallback: Callable[[str], list[ParsedRecap]],
) -> list[ParsedRecap]:
    """Returns the parsed recaps of a job, retrying failed jobs once directly.

    Raises:
        PoolShutdownError: If the pool closed before the job ran.
        RecapError: If the direct retry fails as well.
    """
    try:
        return future.result()
    except (ParseJobError, WorkerError) as e:
        logger.warning(
            "pool_job_failed_falling_back", url=event.recap_url, error=e.message
        )
    return fallback(event.recap_url)


def run_ingestion(
    sources: Iterable[BaseSource],
    pool: RecapPool,
    uploader: EventUploader,
    fallback: Callable[[str], list[ParsedRecap]] = fetch_recaps,
) -> IngestReport:
    """Runs one ingestion pass over all sources.

    Every recap URL becomes one pool job. Results are merged as they complete,
    one candidate at a time, so the store only ever sees a single writer.
    Failures are recorded per item and never abort the run.

    Args:
        sources: Source adapters to list events from.
        pool: Running recap pool.
        uploader: Upsert engine for the parsed candidates.
        fallback: Direct parse used when a pool job fails.

    Returns:
        The per-item report of the run.
    """
    report = IngestReport()
    events = list_events(sources, report)
    logger.info("ingestion_started", events=len(events))

    futures = {pool.enqueue(event.recap_url): event for event in events}
    for future in as_completed(futures):
        event = futures[future]
        item = IngestItem(
            name=event.name,
            source=event.source,
            recap_url=event.recap_url,
            status=UploadStatus.FAILED.value,
        )
        report.items.append(item)

        try:
            recaps = _resolve(future, event, fallback)
        except PoolShutdownError as e:
            item.error = e.message
            logger.error("recap_abandoned", url=event.recap_url)
            continue
        except Exception as e:
            item.error = e.message if isinstance(e, RecapError) else str(e)
            logger.error("recap_failed", url=event.recap_url, error=item.error)
            continue

        candidate = build_candidate(event, recaps)
        item.name = candidate.name
        try:
            result = uploader.upload(candidate)
        except Exception as e:
            item.error = str(e)
            logger.error("upload_failed", event_name=candidate.name, error=str(e))
            continue

        item.status = result.status.value
        item.event_id = result.event_id
        if result.errors:
            item.error = "; ".join(result.errors)

    logger.info(
        "ingestion_finished",
        total=len(report.items),
        succeeded=report.succeeded,
        failed=report.failed,
        skipped=report.skipped,
    )
    return report
