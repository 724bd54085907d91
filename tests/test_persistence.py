import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from timeline_engine.errors import PersistenceError
from timeline_engine.persistence import (
    InMemoryTimelineStore,
    StoredEvent,
    compute_reconciliation_ops,
    find_duplicate_events,
    persist_derived_events,
    remove_duplicate_events,
)
from timeline_engine.schema import ScheduledEvent

T0 = datetime(2025, 3, 4, 12, tzinfo=timezone.utc)


def derived(event_id, start, duration, source_id=None, kind="session_block", title="Office - Work"):
    meta = {"source": "derived", "kind": kind}
    if source_id:
        meta["source_id"] = source_id
    return ScheduledEvent(event_id, title, start, duration, "work", meta=meta)


def stored(event, minutes=0, locked=False):
    return StoredEvent(event, T0 + timedelta(minutes=minutes), locked)


class _Clock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class _FailingStore(InMemoryTimelineStore):
    async def fetch_actual_events(self, user_id, ymd):
        raise ConnectionError("connection reset")


def test_reconciliation_ops_insert_update_delete():
    existing = [
        stored(derived("row-1", 540, 60, "session:a")),
        stored(derived("row-2", 700, 30, "session:gone")),
        stored(derived("row-3", 800, 30, "session:c")),
    ]
    desired = [
        derived("session:a", 540, 75, "session:a"),
        derived("session:c", 800, 30, "session:c"),
        derived("session:new", 900, 20, "session:new"),
    ]

    ops = compute_reconciliation_ops(existing, desired)

    assert [event.id for event in ops.inserts] == ["session:new"]
    assert [(event.id, event.duration) for event in ops.updates] == [("row-1", 75)]
    assert ops.deletes == ["row-2"]
    assert not ops.empty


def test_reconciliation_ops_leave_locked_and_user_records_alone():
    user_edit = derived("row-1", 540, 60, "session:a")
    user_edit.meta["source"] = "user"
    existing = [stored(user_edit), stored(derived("row-2", 700, 30, "session:b"), locked=True)]

    ops = compute_reconciliation_ops(existing, [derived("session:a", 540, 90, "session:a")])

    assert ops.updates == []
    assert ops.deletes == []
    assert ops.inserts == []
    assert ops.empty


def test_reconciliation_ops_skip_same_range_without_source_id():
    existing = [stored(derived("row-1", 540, 60))]
    ops = compute_reconciliation_ops(existing, [derived("new", 540, 60)])
    assert ops.empty


def test_find_duplicate_events_keeps_oldest():
    records = [
        stored(derived("newer", 540, 60), minutes=5),
        stored(derived("oldest", 540, 60), minutes=0),
        stored(derived("other-kind", 540, 60, kind="evidence_block"), minutes=1),
        stored(derived("unique", 600, 30), minutes=2),
    ]
    assert find_duplicate_events(records) == ["newer"]


def test_persist_derived_events_is_idempotent():
    store = InMemoryTimelineStore(clock=_Clock())
    events = [derived("session:a", 540, 60, "session:a"), derived("session:b", 600, 30, "session:b")]

    first = asyncio.run(persist_derived_events(store, "u1", "2025-03-04", events))
    second = asyncio.run(persist_derived_events(store, "u1", "2025-03-04", events))

    assert [event.id for event in first] == ["session:a", "session:b"]
    assert second == []
    assert len(store.records[("u1", "2025-03-04")]) == 2


def test_persist_skips_duplicates_within_one_batch():
    store = InMemoryTimelineStore()
    events = [derived("x", 540, 60), derived("y", 540, 60)]
    inserted = asyncio.run(persist_derived_events(store, "u1", "2025-03-04", events))
    assert [event.id for event in inserted] == ["x"]


def test_remove_duplicate_events():
    store = InMemoryTimelineStore(clock=_Clock())
    asyncio.run(store.insert_events("u1", "2025-03-04", [derived("first", 540, 60)]))
    asyncio.run(store.insert_events("u1", "2025-03-04", [derived("second", 540, 60)]))

    removed = asyncio.run(remove_duplicate_events(store, "u1", "2025-03-04"))

    assert removed == ["second"]
    remaining = asyncio.run(store.fetch_actual_events("u1", "2025-03-04"))
    assert [record.event.id for record in remaining] == ["first"]


def test_store_failures_become_persistence_errors():
    with pytest.raises(PersistenceError) as excinfo:
        asyncio.run(persist_derived_events(_FailingStore(), "u1", "2025-03-04", [derived("x", 540, 60)]))
    assert excinfo.value.kind == "network"
    assert excinfo.value.retryable


def test_in_memory_store_update():
    store = InMemoryTimelineStore()
    asyncio.run(store.insert_events("u1", "2025-03-04", [derived("row-1", 540, 60)]))
    asyncio.run(store.update_events("u1", "2025-03-04", [derived("row-1", 540, 90)]))
    records = asyncio.run(store.fetch_actual_events("u1", "2025-03-04"))
    assert records[0].event.duration == 90
