"""Session Builder: group raw evidence into place sessions.

Raw events are grouped by place into sessions, then two clean-up passes run:
micro-gap merging joins same-place sessions separated by a short gap, and
short-session absorption folds stray sub-10-minute sessions into a same-place
neighbour. Commute sessions are never merged or absorbed.
"""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from typing import Optional

from timeline_engine.app_classification import classify_intent
from timeline_engine.config import Config
from timeline_engine.location_segments import generate_location_segments, merge_adjacent_segments
from timeline_engine.schema import (
    MINUTES_PER_DAY,
    EvidenceBundle,
    RawEvidenceEvent,
    ScheduledEvent,
    SessionBlock,
    day_window,
    ensure_aware,
    minutes_since,
)

logger = logging.getLogger(__name__)

INTENT_LABELS = {
    "work": "Work",
    "leisure": "Leisure",
    "distracted_work": "Distracted Work",
    "offline": "Offline",
    "mixed": "Mixed",
}

INTENT_CATEGORIES = {
    "work": "work",
    "distracted_work": "work",
    "leisure": "digital",
    "offline": "unknown",
    "mixed": "unknown",
}

COMMUTE_MIN_MINUTES = 15
COMMUTE_MAX_MINUTES = 90
COMMUTE_CONFIDENCE = 0.6


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def session_title(place_label: Optional[str], intent: str, is_commute: bool = False) -> str:
    if is_commute:
        return "Commute"
    return f"{place_label or 'Unknown Location'} - {INTENT_LABELS.get(intent, 'Mixed')}"


def _session_confidence(place_id, start, end, summary, is_commute) -> float:
    if is_commute:
        return COMMUTE_CONFIDENCE
    seconds = (end - start).total_seconds()
    screen_share = min(1.0, sum(summary.values()) / seconds) if seconds > 0 else 0.0
    confidence = 0.4 + (0.3 if place_id else 0.0) + 0.3 * screen_share
    return max(0.0, min(1.0, confidence))


def _build_session(user_id: str, events: list[RawEvidenceEvent], app_overrides) -> SessionBlock:
    first = events[0]
    start = min(event.start for event in events)
    end = max(event.end for event in events)
    is_commute = first.is_commute

    summary: dict[str, float] = {}
    for event in events:
        if event.app_id:
            label = event.title or event.app_id
            summary[label] = summary.get(label, 0.0) + (event.end - event.start).total_seconds()

    intent = classify_intent(summary, app_overrides)
    place_id = None if is_commute else first.place_id
    place_label = None if is_commute else first.place_label
    return SessionBlock(
        source_id=f"session:{user_id}:{place_id or 'unknown'}:{_epoch_ms(start)}",
        title=session_title(place_label, intent.intent, is_commute),
        start=start,
        end=end,
        place_id=place_id,
        place_label=place_label,
        intent=intent.intent,
        confidence=_session_confidence(place_id, start, end, summary, is_commute),
        child_event_ids=[event.id for event in events],
        summary=summary,
        is_commute=is_commute,
        reasoning=intent.reasoning,
    )


def _combine_sessions(base: SessionBlock, other: SessionBlock, app_overrides) -> SessionBlock:
    """Fold ``other`` into ``base``; base keeps its identity and place."""

    summary = dict(base.summary)
    for label, seconds in other.summary.items():
        summary[label] = summary.get(label, 0.0) + seconds

    ordered = sorted((base, other), key=lambda session: session.start)
    child_ids = ordered[0].child_event_ids + ordered[1].child_event_ids
    intent = classify_intent(summary, app_overrides)

    base_minutes = max(base.duration_minutes, 0.0)
    other_minutes = max(other.duration_minutes, 0.0)
    total_minutes = base_minutes + other_minutes
    if total_minutes > 0:
        confidence = (base.confidence * base_minutes + other.confidence * other_minutes) / total_minutes
    else:
        confidence = max(base.confidence, other.confidence)

    return replace(
        base,
        title=session_title(base.place_label, intent.intent),
        start=min(base.start, other.start),
        end=max(base.end, other.end),
        intent=intent.intent,
        confidence=max(0.0, min(1.0, confidence)),
        child_event_ids=child_ids,
        summary=summary,
        reasoning=intent.reasoning,
    )


def _same_place(a: SessionBlock, b: SessionBlock) -> bool:
    return not a.is_commute and not b.is_commute and a.place_id == b.place_id


def merge_session_micro_gaps(
    sessions: list[SessionBlock], max_gap_minutes: float = 5, app_overrides=None
) -> list[SessionBlock]:
    """Merge adjacent same-place sessions whose gap is strictly below ``max_gap_minutes``."""

    if len(sessions) <= 1:
        return list(sessions)

    max_gap = timedelta(minutes=max_gap_minutes)
    ordered = sorted(sessions, key=lambda session: session.start)
    merged = [ordered[0]]
    for session in ordered[1:]:
        last = merged[-1]
        if _same_place(last, session) and session.start - last.end < max_gap:
            merged[-1] = _combine_sessions(last, session, app_overrides)
        else:
            merged.append(session)
    return merged


def absorb_short_sessions(
    sessions: list[SessionBlock], min_minutes: float = 10, app_overrides=None
) -> list[SessionBlock]:
    """Fold short non-commute sessions into a same-place neighbour until nothing changes.

    The preceding neighbour is preferred; the following one is used otherwise.
    """

    if len(sessions) <= 1:
        return list(sessions)

    result = sorted(sessions, key=lambda session: session.start)
    changed = True
    while changed:
        changed = False
        for index, session in enumerate(result):
            if session.is_commute or session.duration_minutes >= min_minutes:
                continue
            previous = result[index - 1] if index > 0 else None
            following = result[index + 1] if index + 1 < len(result) else None
            if previous is not None and _same_place(previous, session):
                result[index - 1] = _combine_sessions(previous, session, app_overrides)
                del result[index]
                changed = True
                break
            if following is not None and _same_place(following, session):
                result[index + 1] = _combine_sessions(following, session, app_overrides)
                del result[index]
                changed = True
                break
    return result


def sessionize_window(
    user_id: str,
    window_start: datetime,
    window_end: datetime,
    raw_events: list[RawEvidenceEvent],
    app_overrides: Optional[dict[str, str]] = None,
    config: Optional[Config] = None,
) -> list[SessionBlock]:
    """Build place sessions for one ingestion window."""

    config = config or Config()
    clipped = []
    for event in raw_events:
        start = max(ensure_aware(event.start, window_start.tzinfo), window_start)
        end = min(ensure_aware(event.end, window_start.tzinfo), window_end)
        if end <= start:
            continue
        clipped.append(replace(event, start=start, end=end) if (start, end) != (event.start, event.end) else event)
    clipped.sort(key=lambda event: (event.start, event.end))

    # only a change of place or a commute starts a new group
    groups: list[list[RawEvidenceEvent]] = []
    for event in clipped:
        if groups and not event.is_commute and not groups[-1][0].is_commute:
            if groups[-1][0].place_id == event.place_id:
                groups[-1].append(event)
                continue
        groups.append([event])

    sessions = [_build_session(user_id, group, app_overrides) for group in groups]
    sessions = merge_session_micro_gaps(sessions, config.micro_gap_minutes, app_overrides)
    sessions = absorb_short_sessions(sessions, config.short_session_minutes, app_overrides)
    logger.debug("Built %d sessions from %d raw events for %s", len(sessions), len(clipped), user_id)
    return sessions


def _tag_commutes(locations: list[RawEvidenceEvent]) -> list[RawEvidenceEvent]:
    """Tag unknown-place stretches between two different known places as commutes."""

    tagged = list(locations)
    for index in range(1, len(tagged) - 1):
        event = tagged[index]
        before, after = tagged[index - 1], tagged[index + 1]
        minutes = (event.end - event.start).total_seconds() / 60
        if (
            event.place_id is None
            and before.place_id
            and after.place_id
            and before.place_id != after.place_id
            and COMMUTE_MIN_MINUTES <= minutes <= COMMUTE_MAX_MINUTES
        ):
            tagged[index] = replace(event, is_commute=True, title="Commute")
    return tagged


def _place_at(moment: datetime, locations: list[RawEvidenceEvent]):
    for event in locations:
        if event.start <= moment < event.end and not event.is_commute:
            return event.place_id, event.place_label
    return None, None


def raw_events_from_bundle(bundle: EvidenceBundle, ymd: str, tz: Optional[tzinfo] = None) -> list[RawEvidenceEvent]:
    """Flatten an evidence bundle into raw events ready for sessionizing."""

    window_start, window_end = day_window(ymd, tz)
    locations: list[RawEvidenceEvent] = []

    if bundle.location_samples and bundle.user_places:
        samples = [replace(s, recorded_at=ensure_aware(s.recorded_at, tz)) for s in bundle.location_samples]
        segments = merge_adjacent_segments(
            generate_location_segments(samples, bundle.user_places, window_start, window_end)
        )
        for segment in segments:
            locations.append(
                RawEvidenceEvent(
                    id=segment.source_id,
                    start=segment.start,
                    end=segment.end,
                    source="location",
                    title=segment.place_label or "Unknown Location",
                    place_id=segment.place_id,
                    place_label=segment.place_label,
                    sample_count=segment.sample_count,
                )
            )
    else:
        for row in sorted(bundle.location_hourly, key=lambda r: r.hour_start):
            hour_start = ensure_aware(row.hour_start, tz)
            label = row.place_label or row.place_category
            locations.append(
                RawEvidenceEvent(
                    id=f"location_hour:{_epoch_ms(hour_start)}",
                    start=hour_start,
                    end=hour_start + timedelta(hours=1),
                    source="location",
                    title=label or "Unknown Location",
                    place_id=row.place_id or (label.lower() if label else None),
                    place_label=label,
                    accuracy_m=row.avg_accuracy_m,
                    sample_count=row.sample_count,
                )
            )

    locations = _tag_commutes(locations)
    events = list(locations)

    for session in bundle.screen_time_sessions:
        start = ensure_aware(session.started_at, tz)
        end = ensure_aware(session.ended_at, tz)
        place_id, place_label = _place_at(start + (end - start) / 2, locations)
        events.append(
            RawEvidenceEvent(
                id=f"screen_time:{session.id}",
                start=start,
                end=end,
                source="screen_time",
                title=session.app_name,
                place_id=place_id,
                place_label=place_label,
                app_id=session.app_id,
            )
        )

    for workout in bundle.health_workouts:
        start = ensure_aware(workout.started_at, tz)
        end = ensure_aware(workout.ended_at, tz)
        place_id, place_label = _place_at(start + (end - start) / 2, locations)
        events.append(
            RawEvidenceEvent(
                id=f"workout:{workout.id}",
                start=start,
                end=end,
                source="health",
                title=workout.activity_type or "Workout",
                place_id=place_id,
                place_label=place_label,
            )
        )

    events.sort(key=lambda event: (event.start, event.end))
    return events


def session_block_to_event(session: SessionBlock, midnight: datetime) -> Optional[ScheduledEvent]:
    """Convert a session to a derived actual event, clipped to the day."""

    start = max(0, math.floor(minutes_since(midnight, session.start)))
    end = min(MINUTES_PER_DAY, math.ceil(minutes_since(midnight, session.end)))
    if end <= start:
        return None

    category = "travel" if session.is_commute else INTENT_CATEGORIES.get(session.intent, "unknown")
    return ScheduledEvent(
        id=session.source_id,
        title=session.title,
        start_minutes=start,
        duration=end - start,
        category=category,
        description=session.reasoning,
        location=session.place_label,
        meta={
            "source": "derived",
            "kind": "session_block",
            "source_id": session.source_id,
            "confidence": session.confidence,
            "place_id": session.place_id,
            "intent": session.intent,
            "children": list(session.child_event_ids),
            "summary": dict(session.summary),
        },
    )
