"""Idempotent write-back of derived actual events.

There are no transactions at this boundary. Inserts are skipped when a record
with the same provenance id, or the same (start, end, kind), already exists.
Races that still produce duplicates are cleaned up by `find_duplicate_events`,
which keeps the oldest record of each (start, end, kind).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from timeline_engine.errors import PersistenceError, to_persistence_error
from timeline_engine.schema import ScheduledEvent
from timeline_engine.timeline import EventPriority, get_event_priority

logger = logging.getLogger(__name__)

RangeKey = tuple[int, int, Optional[str]]


@dataclass
class StoredEvent:
    event: ScheduledEvent
    created_at: datetime
    locked: bool = False

    @property
    def source_id(self) -> Optional[str]:
        return (self.event.meta or {}).get("source_id")

    @property
    def range_key(self) -> RangeKey:
        return range_key(self.event)

    @property
    def protected(self) -> bool:
        return self.locked or get_event_priority(self.event) == EventPriority.USER_EDITED


@dataclass
class ReconciliationOps:
    inserts: list[ScheduledEvent] = field(default_factory=list)
    updates: list[ScheduledEvent] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.inserts or self.updates or self.deletes)


def range_key(event: ScheduledEvent) -> RangeKey:
    return (event.start_minutes, event.end_minutes, (event.meta or {}).get("kind"))


class TimelineStore(Protocol):
    async def fetch_actual_events(self, user_id: str, ymd: str) -> list[StoredEvent]: ...

    async def insert_events(self, user_id: str, ymd: str, events: list[ScheduledEvent]) -> None: ...

    async def update_events(self, user_id: str, ymd: str, events: list[ScheduledEvent]) -> None: ...

    async def delete_events(self, user_id: str, ymd: str, event_ids: list[str]) -> None: ...


def _is_derived(event: ScheduledEvent) -> bool:
    return get_event_priority(event) in (
        EventPriority.DERIVED_EVIDENCE,
        EventPriority.SCREEN_TIME,
        EventPriority.UNKNOWN,
    )


def _differs(stored: ScheduledEvent, derived: ScheduledEvent) -> bool:
    return (
        stored.start_minutes != derived.start_minutes
        or stored.duration != derived.duration
        or stored.title != derived.title
        or stored.category != derived.category
    )


def compute_reconciliation_ops(stored: list[StoredEvent], derived: list[ScheduledEvent]) -> ReconciliationOps:
    """Inserts, updates and deletes that bring stored derived records in line with ``derived``.

    Locked and user-edited records are never updated or deleted.
    """

    ops = ReconciliationOps()
    by_source_id = {record.source_id: record for record in stored if record.source_id}
    by_range = {record.range_key: record for record in stored}
    wanted_source_ids = set()

    for event in derived:
        source_id = (event.meta or {}).get("source_id")
        if source_id:
            wanted_source_ids.add(source_id)
        record = by_source_id.get(source_id) if source_id else None
        if record is not None:
            if not record.protected and _differs(record.event, event):
                ops.updates.append(replace(event, id=record.event.id))
            continue
        if range_key(event) in by_range:
            continue
        ops.inserts.append(event)

    for record in stored:
        if record.protected or not _is_derived(record.event):
            continue
        if record.source_id and record.source_id not in wanted_source_ids:
            ops.deletes.append(record.event.id)

    return ops


def find_duplicate_events(stored: list[StoredEvent]) -> list[str]:
    """Ids to delete so that only the oldest record of each (start, end, kind) remains."""

    seen: set[RangeKey] = set()
    duplicates = []
    for record in sorted(stored, key=lambda r: (r.created_at, r.event.id)):
        key = record.range_key
        if key in seen:
            duplicates.append(record.event.id)
        else:
            seen.add(key)
    return duplicates


async def persist_derived_events(
    store: TimelineStore, user_id: str, ymd: str, events: list[ScheduledEvent]
) -> list[ScheduledEvent]:
    """Insert the derived events that are not stored yet; returns what was inserted."""

    try:
        existing = await store.fetch_actual_events(user_id, ymd)
    except Exception as exc:
        raise to_persistence_error(exc) from exc

    source_ids = {record.source_id for record in existing if record.source_id}
    ranges = {record.range_key for record in existing}
    to_insert = []
    for event in events:
        source_id = (event.meta or {}).get("source_id")
        if (source_id and source_id in source_ids) or range_key(event) in ranges:
            continue
        to_insert.append(event)
        if source_id:
            source_ids.add(source_id)
        ranges.add(range_key(event))

    if to_insert:
        try:
            await store.insert_events(user_id, ymd, to_insert)
        except Exception as exc:
            raise to_persistence_error(exc) from exc

    logger.info(
        "Persisted derived events",
        extra={
            "timeline_user_id": user_id,
            "timeline_ymd": ymd,
            "timeline_inserted": len(to_insert),
            "timeline_skipped": len(events) - len(to_insert),
        },
    )
    return to_insert


async def remove_duplicate_events(store: TimelineStore, user_id: str, ymd: str) -> list[str]:
    try:
        existing = await store.fetch_actual_events(user_id, ymd)
        duplicates = find_duplicate_events(existing)
        if duplicates:
            await store.delete_events(user_id, ymd, duplicates)
    except PersistenceError:
        raise
    except Exception as exc:
        raise to_persistence_error(exc) from exc
    if duplicates:
        logger.warning("Removed %d duplicate events for %s", len(duplicates), ymd)
    return duplicates


class InMemoryTimelineStore:
    """Dict-backed store; records keep their insertion time as ``created_at``."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.records: dict[tuple[str, str], list[StoredEvent]] = {}

    async def fetch_actual_events(self, user_id, ymd):
        return list(self.records.get((user_id, ymd), []))

    async def insert_events(self, user_id, ymd, events):
        bucket = self.records.setdefault((user_id, ymd), [])
        for event in events:
            bucket.append(StoredEvent(event=event, created_at=self._clock()))

    async def update_events(self, user_id, ymd, events):
        by_id = {event.id: event for event in events}
        bucket = self.records.get((user_id, ymd), [])
        for index, record in enumerate(bucket):
            if record.event.id in by_id:
                bucket[index] = replace(record, event=by_id[record.event.id])

    async def delete_events(self, user_id, ymd, event_ids):
        doomed = set(event_ids)
        bucket = self.records.get((user_id, ymd), [])
        self.records[(user_id, ymd)] = [record for record in bucket if record.event.id not in doomed]
