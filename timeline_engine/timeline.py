"""Timeline Reconciler: merge candidate actual events into one non-overlapping timeline.

Overlaps are resolved by provenance priority. A stronger event splits any
weaker event it overlaps; a weaker (or equally strong) newcomer is split around
the events already held. Pieces shorter than the minimum segment duration are
dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional

from timeline_engine.schema import MINUTES_PER_DAY, ScheduledEvent

logger = logging.getLogger(__name__)

DERIVED_KINDS = {
    "evidence_block",
    "location_inferred",
    "location_block",
    "session_block",
    "planned_actual",
    "sleep_schedule",
    "sleep_interrupted",
    "sleep_late",
    "transition_commute",
    "transition_prep",
    "transition_wind_down",
}

DERIVED_ID_PREFIXES = ("derived_actual:", "derived_evidence:", "st:")


class EventPriority(IntEnum):
    """Provenance rank; a lower value is more trusted."""

    USER_EDITED = 1
    SUPABASE_ACTUAL = 2
    DERIVED_EVIDENCE = 3
    SCREEN_TIME = 4
    UNKNOWN = 5

    def outranks(self, other: "EventPriority") -> bool:
        return self.value < other.value


def get_event_priority(event: ScheduledEvent) -> EventPriority:
    meta = event.meta or {}
    source = meta.get("source")
    kind = meta.get("kind")

    if source in ("user", "actual_adjust"):
        return EventPriority.USER_EDITED
    if kind in ("unknown_gap", "pattern_gap"):
        return EventPriority.UNKNOWN
    if kind == "screen_time":
        return EventPriority.SCREEN_TIME
    if source in ("evidence", "derived") or kind in DERIVED_KINDS:
        return EventPriority.DERIVED_EVIDENCE
    if source == "system" or not source:
        if event.id.startswith(DERIVED_ID_PREFIXES):
            return EventPriority.DERIVED_EVIDENCE
        return EventPriority.SUPABASE_ACTUAL
    return EventPriority.DERIVED_EVIDENCE


def split_id(original_id: str, index: int) -> str:
    return f"{original_id}:split:{index}"


@dataclass
class _HeldEvent:
    event: ScheduledEvent
    start: int
    end: int
    priority: EventPriority


@dataclass
class ValidationResult:
    valid: bool
    overlaps: list[tuple[str, str]] = field(default_factory=list)


def _segment(held: _HeldEvent, event_id: str, start: int, end: int) -> _HeldEvent:
    event = replace(held.event, id=event_id, start_minutes=start, duration=end - start)
    return _HeldEvent(event, start, end, held.priority)


class ActualTimelineBuilder:
    """Incrementally builds a timeline in which no two events overlap."""

    def __init__(self, min_duration_minutes: int = 1):
        self.min_duration_minutes = min_duration_minutes
        self._events: list[_HeldEvent] = []

    @property
    def event_count(self) -> int:
        return len(self._events)

    def add_event(self, event: ScheduledEvent) -> None:
        start = event.start_minutes
        end = event.start_minutes + event.duration
        if end <= start:
            logger.debug("Dropping event %s with non-positive duration", event.id)
            return

        incoming = _HeldEvent(event, start, end, get_event_priority(event))
        overlapping = [held for held in self._events if held.start < end and held.end > start]
        if not overlapping:
            self._events.append(incoming)
            return

        weaker = [held for held in overlapping if incoming.priority.outranks(held.priority)]
        blockers = [held for held in overlapping if not incoming.priority.outranks(held.priority)]

        for held in weaker:
            self._split_around(held, start, end)

        if blockers:
            for piece in self._split_new(incoming, blockers):
                if piece.end - piece.start >= self.min_duration_minutes:
                    self._events.append(piece)
        else:
            self._events.append(incoming)

    def add_events(self, events: list[ScheduledEvent]) -> None:
        """Add a batch, strongest provenance first, then by start time."""

        for event in sorted(events, key=lambda e: (get_event_priority(e), e.start_minutes)):
            self.add_event(event)

    def _split_around(self, held: _HeldEvent, block_start: int, block_end: int) -> None:
        self._events.remove(held)
        index = 0
        if held.start < block_start:
            before_end = min(held.end, block_start)
            if before_end - held.start >= self.min_duration_minutes:
                self._events.append(_segment(held, split_id(held.event.id, index), held.start, before_end))
                index += 1
        if held.end > block_end:
            after_start = max(held.start, block_end)
            if held.end - after_start >= self.min_duration_minutes:
                self._events.append(_segment(held, split_id(held.event.id, index), after_start, held.end))

    def _split_new(self, incoming: _HeldEvent, blockers: list[_HeldEvent]) -> list[_HeldEvent]:
        pieces = []
        cursor = incoming.start
        index = 0
        for blocker in sorted(blockers, key=lambda held: held.start):
            if cursor < blocker.start and cursor < incoming.end:
                piece_end = min(blocker.start, incoming.end)
                if piece_end - cursor >= self.min_duration_minutes:
                    pieces.append(_segment(incoming, split_id(incoming.event.id, index), cursor, piece_end))
                    index += 1
            cursor = max(cursor, blocker.end)

        if cursor < incoming.end and incoming.end - cursor >= self.min_duration_minutes:
            piece_id = split_id(incoming.event.id, index) if index > 0 else incoming.event.id
            pieces.append(_segment(incoming, piece_id, cursor, incoming.end))
        return pieces

    def build(self) -> list[ScheduledEvent]:
        return [held.event for held in sorted(self._events, key=lambda held: held.start)]

    def validate(self) -> ValidationResult:
        overlaps = []
        ordered = sorted(self._events, key=lambda held: held.start)
        for i, first in enumerate(ordered):
            for second in ordered[i + 1 :]:
                if second.start >= first.end:
                    break
                overlaps.append((first.event.id, second.event.id))
        return ValidationResult(valid=not overlaps, overlaps=overlaps)

    def clear(self) -> None:
        self._events = []


def build_non_overlapping_timeline(events: list[ScheduledEvent], min_duration_minutes: int = 1) -> list[ScheduledEvent]:
    builder = ActualTimelineBuilder(min_duration_minutes)
    builder.add_events(events)
    return builder.build()


def clip_event_to_day(event: ScheduledEvent) -> Optional[ScheduledEvent]:
    """Clip an event to [0, 1440); None when nothing of it falls inside the day."""

    start = max(0, event.start_minutes)
    end = min(MINUTES_PER_DAY, event.start_minutes + event.duration)
    if end <= start:
        return None
    if start == event.start_minutes and end - start == event.duration:
        return event
    return replace(event, start_minutes=start, duration=end - start)


def fill_unknown_gaps(events: list[ScheduledEvent], min_gap_minutes: int = 1) -> list[ScheduledEvent]:
    """Unknown events covering every span of the day no event covers.

    Each returned gap is maximal, so neighbouring uncovered minutes end up in
    one event.
    """

    gaps = []
    cursor = 0
    for event in sorted(events, key=lambda e: e.start_minutes):
        start = max(0, event.start_minutes)
        end = min(MINUTES_PER_DAY, event.start_minutes + event.duration)
        if end <= start:
            continue
        if start > cursor and start - cursor >= min_gap_minutes:
            gaps.append((cursor, start))
        cursor = max(cursor, end)
    if MINUTES_PER_DAY - cursor >= min_gap_minutes and cursor < MINUTES_PER_DAY:
        gaps.append((cursor, MINUTES_PER_DAY))

    return [
        ScheduledEvent(
            id=f"unknown_gap:{start}",
            title="Unknown",
            start_minutes=start,
            duration=end - start,
            category="unknown",
            meta={"source": "derived", "kind": "unknown_gap", "confidence": 0.0},
        )
        for start, end in gaps
    ]
