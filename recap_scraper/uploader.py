"""Entity resolution and upsert of parsed events into the store.

Merging a CandidateEvent is idempotent: re-running on unchanged input adds no
documents and no score entries, and new recaps for a known event append to the
groups' score history. Every write is a single-document operation, so a failed
write is logged and skipped while the remaining rows still go through.

Group matching differs between the two paths. A new event resolves groups by
name or alias alone; an existing event additionally requires the group's
division to equal the recap's division. Both behaviours are kept as they are,
see ``match_division_on_create``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from recap_scraper.config import TRACKED_DIVISION_PREFIX
from recap_scraper.exceptions import StoreWriteError, StructureError
from recap_scraper.geocoder import Geocoder
from recap_scraper.models import (
    CandidateEvent,
    EventDict,
    GroupDict,
    ParsedRecap,
    ParsedRow,
    RecapDict,
    ScoreEntryDict,
    to_number,
)
from recap_scraper.storage import EVENTS, GROUPS, Collection, Document, Filter, MemoryStore
from recap_scraper.utils.date_and_time import safe_date

logger = structlog.get_logger(__name__)


class DivisionRefresh(Enum):
    """When an existing group's recorded division follows a new recap.

    NEVER: keep the division the group was created with.
    LATEST_IN_EVENT: the recap carries the newest date among the event's
        recaps.
    NEWER_THAN_GROUP: the recap is newer than every dated score entry the
        group already has.
    """

    NEVER = "never"
    LATEST_IN_EVENT = "latest-in-event"
    NEWER_THAN_GROUP = "newer-than-group"


class UploadStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UploadResult:
    name: str
    status: UploadStatus = UploadStatus.SKIPPED
    event_id: str | None = None
    groups_created: int = 0
    scores_added: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != UploadStatus.FAILED


@dataclass
class _Row:
    parsed: ParsedRow
    scores: dict[str, float]
    group_id: str | None = None


@dataclass
class _Recap:
    parsed: ParsedRecap
    date: datetime | None
    rows: list[_Row]

    @property
    def division(self) -> str:
        return self.parsed.division

    def to_document(self) -> RecapDict:
        doc: RecapDict = {
            "division": self.parsed.division,
            "caption_labels": list(self.parsed.caption_labels),
            "rows": [],
            "location": self.parsed.location,
        }
        for row in self.rows:
            stored = {
                "name": row.parsed.name,
                "captions": [to_number(c) for c in row.parsed.captions],
                "subtotal": to_number(row.parsed.subtotal),
                "total": to_number(row.parsed.total),
            }
            if row.group_id:
                stored["group_id"] = row.group_id
            doc["rows"].append(stored)
        if self.date is not None:
            doc["date"] = self.date
        return doc


def group_filter(name: str, division: str | None = None) -> Filter:
    """Matches a group by exact or case-insensitive name or alias.

    Args:
        name: Group name as printed on the recap.
        division: When given, the group's division must also be equal.
    """
    lower = name.lower()
    by_name = Filter.or_(
        Filter.where("name", "==", name),
        Filter.where("aliases", "array-contains", name),
        Filter.where("name_lower", "==", lower),
        Filter.where("aliases_lower", "array-contains", lower),
    )
    if division is None:
        return by_name
    return Filter.and_(by_name, Filter.where("division", "==", division))


def has_score_for(group: dict[str, Any], event_id: str) -> bool:
    return any(s.get("event_id") == event_id for s in group.get("scores") or [])


def refreshes_division(
    policy: DivisionRefresh,
    recap_date: datetime | None,
    event_dates: list[datetime | None],
    existing_scores: list[ScoreEntryDict],
) -> bool:
    """Whether a group's recorded division is rewritten from a recap.

    Only the update path asks this. Undated recaps never refresh.

    Args:
        policy: The configured DivisionRefresh.
        recap_date: Sanitised date of the recap being merged.
        event_dates: Sanitised dates of all recaps of the candidate.
        existing_scores: Score entries the group had before this merge.
    """
    if recap_date is None or policy is DivisionRefresh.NEVER:
        return False
    if policy is DivisionRefresh.LATEST_IN_EVENT:
        return recap_date >= max(d for d in event_dates if d is not None)
    seen = [safe_date(s.get("date")) for s in existing_scores]
    return all(d < recap_date for d in seen if d is not None)


class EventUploader:
    """Merges candidate events into the ``events`` and ``groups`` collections."""

    def __init__(
        self,
        store: MemoryStore,
        geocoder: Geocoder | None = None,
        division_prefix: str = TRACKED_DIVISION_PREFIX,
        division_refresh: DivisionRefresh = DivisionRefresh.NEWER_THAN_GROUP,
        match_division_on_create: bool = False,
    ) -> None:
        """Initializes the uploader.

        Args:
            store: Store holding the events and groups collections.
            geocoder: Optional location enrichment.
            division_prefix: Only recaps whose division starts with this are
                tracked.
            division_refresh: Policy for updating a group's division.
            match_division_on_create: Scope group matching by division on the
                creation path as well (off keeps the historical behaviour).
        """
        self.events: Collection = store.collection(EVENTS)
        self.groups: Collection = store.collection(GROUPS)
        self.geocoder = geocoder
        self.division_prefix = division_prefix
        self.division_refresh = division_refresh
        self.match_division_on_create = match_division_on_create

    def upload(self, candidate: CandidateEvent) -> UploadResult:
        """Creates or updates the event and its groups for one candidate."""
        log = logger.bind(event_name=candidate.name, source=candidate.source)
        result = UploadResult(name=candidate.name)

        matches = self.events.where(Filter.where("name", "==", candidate.name))
        if matches:
            self._update_event(candidate, matches[0], result, log)
        else:
            self._create_event(candidate, result, log)

        log.info(
            "event_uploaded",
            status=result.status.value,
            event_id=result.event_id,
            groups_created=result.groups_created,
            scores_added=result.scores_added,
            errors=len(result.errors),
        )
        return result

    # -- paths ---------------------------------------------------------------

    def _create_event(self, candidate: CandidateEvent, result: UploadResult, log) -> None:
        recaps = self._prepare_recaps(candidate, result, log)
        if not recaps:
            log.info("event_skipped_no_tracked_recaps")
            result.status = UploadStatus.SKIPPED
            return

        log.info("new_event_found")
        location = self._enrich_location(recaps, log)

        for recap in recaps:
            division = recap.division if self.match_division_on_create else None
            for row in recap.rows:
                group = self._find_group(row.parsed.name, division)
                if group is not None:
                    row.group_id = group.id
                    continue
                doc = self._new_group_document(row, recap, candidate.source, scores=[])
                row.group_id = self._add(self.groups, doc, result, log)
                if row.group_id:
                    result.groups_created += 1
                    log.info("group_created", group=row.parsed.name, group_id=row.group_id)

        event_doc: EventDict = {
            "name": candidate.name,
            "source": candidate.source,
            "recap_url": candidate.recap_url,
            "recaps": [r.to_document() for r in recaps],
        }
        if location is not None:
            event_doc["coordinates"] = {"lat": location.lat, "lng": location.lng}
            event_doc["formatted_address"] = location.formatted_address
        event_date = safe_date(candidate.date)
        if event_date is not None:
            event_doc["date"] = event_date

        event_id = self._add(self.events, event_doc, result, log)
        if event_id is None:
            result.status = UploadStatus.FAILED
            return
        result.event_id = event_id
        result.status = UploadStatus.CREATED
        log.info("event_created", event_id=event_id)

        for recap in recaps:
            for row in recap.rows:
                if not row.group_id:
                    continue
                snapshot = self.groups.get(row.group_id)
                if snapshot is None:
                    log.warning("group_vanished", group_id=row.group_id)
                    continue
                if has_score_for(snapshot.data, event_id):
                    continue
                scores = list(snapshot.data.get("scores") or [])
                update = {"scores": [*scores, self._score_entry(event_id, recap, row)]}
                if self._update(self.groups, row.group_id, update, result, log):
                    result.scores_added += 1

    def _update_event(
        self,
        candidate: CandidateEvent,
        existing: Document,
        result: UploadResult,
        log,
    ) -> None:
        event_id = existing.id
        result.event_id = event_id
        log = log.bind(event_id=event_id)

        recaps = self._prepare_recaps(candidate, result, log)
        if not recaps:
            log.info("event_skipped_no_tracked_recaps")
            result.status = UploadStatus.SKIPPED
            return

        location = None
        coordinates = existing.data.get("coordinates") or {}
        if coordinates.get("lat") is None:
            location = self._enrich_location(recaps, log)

        for recap in recaps:
            for row in recap.rows:
                entry = self._score_entry(event_id, recap, row)
                group = self._find_group(row.parsed.name, recap.division)

                if group is None:
                    doc = self._new_group_document(
                        row, recap, candidate.source, scores=[entry]
                    )
                    row.group_id = self._add(self.groups, doc, result, log)
                    if row.group_id:
                        result.groups_created += 1
                        result.scores_added += 1
                        log.info(
                            "group_created", group=row.parsed.name, group_id=row.group_id
                        )
                    continue

                row.group_id = group.id
                if has_score_for(group.data, event_id):
                    log.debug("scores_already_exist", group=row.parsed.name)
                    continue

                scores = list(group.data.get("scores") or [])
                update: dict[str, Any] = {"scores": [*scores, entry]}
                if refreshes_division(
                    self.division_refresh,
                    recap.date,
                    [r.date for r in recaps],
                    scores,
                ):
                    update["division"] = recap.division
                if self._update(self.groups, group.id, update, result, log):
                    result.scores_added += 1
                    log.info("scores_added", group=row.parsed.name, group_id=group.id)

        fields: dict[str, Any] = {
            "recaps": self._merge_recaps(
                existing.data.get("recaps") or [], [r.to_document() for r in recaps]
            )
        }
        if location is not None:
            fields["coordinates"] = {"lat": location.lat, "lng": location.lng}
            fields["formatted_address"] = location.formatted_address

        if self._update(self.events, event_id, fields, result, log):
            result.status = UploadStatus.UPDATED
        else:
            result.status = UploadStatus.FAILED

    # -- helpers -------------------------------------------------------------

    def _prepare_recaps(
        self, candidate: CandidateEvent, result: UploadResult, log
    ) -> list[_Recap]:
        """Keeps tracked divisions, sanitises dates and zips caption scores."""
        prepared = []
        for parsed in candidate.recaps:
            if not parsed.division.startswith(self.division_prefix):
                log.debug("recap_division_ignored", division=parsed.division)
                continue
            try:
                rows = [
                    _Row(parsed=row, scores=row.score_map(parsed.caption_labels))
                    for row in parsed.rows
                ]
            except StructureError as e:
                log.error("recap_misaligned", division=parsed.division, error=e.message)
                result.errors.append(f"{parsed.division}: {e.message}")
                continue
            prepared.append(_Recap(parsed=parsed, date=safe_date(parsed.date), rows=rows))
        return prepared

    def _enrich_location(self, recaps: list[_Recap], log):
        if self.geocoder is None:
            return None
        address = next((r.parsed.location for r in recaps if r.parsed.location), None)
        if not address:
            return None
        try:
            return self.geocoder.geocode(address)
        except Exception as e:
            log.error("geocode_failed", address=address, error=str(e))
            return None

    def _find_group(self, name: str, division: str | None) -> Document | None:
        matches = self.groups.where(group_filter(name, division))
        return matches[0] if matches else None

    def _new_group_document(
        self,
        row: _Row,
        recap: _Recap,
        source: str,
        scores: list[ScoreEntryDict],
    ) -> GroupDict:
        doc: GroupDict = {
            "name": row.parsed.name,
            "name_lower": row.parsed.name.lower(),
            "aliases": [],
            "aliases_lower": [],
            "division": recap.division,
            "source": source,
            "scores": scores,
        }
        if recap.date is not None:
            doc["date"] = recap.date
        return doc

    @staticmethod
    def _score_entry(event_id: str, recap: _Recap, row: _Row) -> ScoreEntryDict:
        entry: ScoreEntryDict = {"event_id": event_id, "scores": dict(row.scores)}
        if recap.date is not None:
            entry["date"] = recap.date
        return entry

    @staticmethod
    def _merge_recaps(
        stored: list[RecapDict], new: list[RecapDict]
    ) -> list[RecapDict]:
        """Replaces stored recaps of the same divisions, keeps the others."""
        replaced = {doc["division"] for doc in new}
        merged = [old for old in stored if old.get("division") not in replaced]
        merged.extend(new)
        return merged

    def _add(self, collection: Collection, doc: dict, result: UploadResult, log) -> str | None:
        try:
            return collection.add(doc)
        except StoreWriteError as e:
            log.error("store_write_failed", collection=collection.name, error=e.message)
            result.errors.append(e.message)
            return None

    def _update(
        self,
        collection: Collection,
        doc_id: str,
        fields: dict,
        result: UploadResult,
        log,
    ) -> bool:
        try:
            collection.update(doc_id, fields)
            return True
        except StoreWriteError as e:
            log.error(
                "store_write_failed",
                collection=collection.name,
                doc_id=doc_id,
                error=e.message,
            )
            result.errors.append(e.message)
            return False
