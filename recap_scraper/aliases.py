"""Merging duplicate groups under one canonical name.

Circuits print the same group under different names ("Saratoga HS World" and
"Saratoga HS"). Before an alias is known the uploader creates one group per
spelling; merge_alias folds them back into a single document.
"""

from dataclasses import dataclass, field

import structlog

from recap_scraper.models import ScoreEntryDict
from recap_scraper.storage import EVENTS, GROUPS, MemoryStore
from recap_scraper.uploader import group_filter

logger = structlog.get_logger(__name__)


@dataclass
class MergeResult:
    group_id: str
    merged_ids: list[str] = field(default_factory=list)
    aliases: list[str] = field(default_factory=list)
    events_repointed: int = 0


def _unique(values) -> list:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def merge_alias(store: MemoryStore, group_name: str, alias: str) -> MergeResult | None:
    """Records ``alias`` for ``group_name`` and merges the matching groups.

    Every group whose name or alias matches either string is merged into one
    document named ``group_name``. Score entries are unioned by event id (the
    first one seen wins), the other groups are deleted and events referring to
    them are re-pointed to the kept group.

    Args:
        store: Store holding the groups and events collections.
        group_name: Canonical group name.
        alias: Alternative spelling to record.

    Returns:
        The merge outcome, or None if no group matches either name.

    Raises:
        StoreWriteError: If a write fails. Writes are not transactional, so a
            failure may leave duplicates behind; re-running the merge is safe.
    """
    groups = store.collection(GROUPS)
    events = store.collection(EVENTS)

    matches = []
    for name in (group_name, alias):
        for doc in groups.where(group_filter(name)):
            if doc.id not in (m.id for m in matches):
                matches.append(doc)

    if not matches:
        logger.warning("alias_groups_not_found", group=group_name, alias=alias)
        return None

    # Prefer the group already carrying the canonical name
    matches.sort(key=lambda doc: doc.data.get("name") != group_name)
    kept, others = matches[0], matches[1:]

    aliases = _unique(
        a
        for doc in matches
        for a in [doc.data.get("name"), *(doc.data.get("aliases") or [])]
        if a and a != group_name
    )
    if alias != group_name and alias not in aliases:
        aliases.append(alias)

    scores: list[ScoreEntryDict] = []
    seen_events = set()
    for doc in matches:
        for entry in doc.data.get("scores") or []:
            if entry.get("event_id") in seen_events:
                continue
            seen_events.add(entry.get("event_id"))
            scores.append(entry)

    groups.update(
        kept.id,
        {
            "name": group_name,
            "name_lower": group_name.lower(),
            "aliases": aliases,
            "aliases_lower": _unique(a.lower() for a in aliases),
            "scores": scores,
        },
    )

    result = MergeResult(group_id=kept.id, aliases=aliases)
    merged_ids = {doc.id for doc in others}
    if merged_ids:
        for event in events.all():
            recaps = event.data.get("recaps") or []
            changed = False
            for recap in recaps:
                for row in recap.get("rows") or []:
                    if row.get("group_id") in merged_ids:
                        row["group_id"] = kept.id
                        changed = True
            if changed:
                events.update(event.id, {"recaps": recaps})
                result.events_repointed += 1

        for doc in others:
            groups.delete(doc.id)
            result.merged_ids.append(doc.id)

    logger.info(
        "alias_added",
        group=group_name,
        alias=alias,
        group_id=kept.id,
        merged=len(result.merged_ids),
        events_repointed=result.events_repointed,
    )
    return result
