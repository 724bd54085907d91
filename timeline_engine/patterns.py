"""Pattern Model: a weekly schedule learned from historical actual events.

History is bucketed into (day of week, 30-minute slot) cells. Each cell keeps
a weighted vote over (category, title); the winner and its share of the vote
become the slot's suggestion and confidence. Lookups return None when there
is no index or no matching slot.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Optional

from timeline_engine.schema import MINUTES_PER_DAY, ScheduledEvent, day_of_week

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30
MIN_CONFIDENCE = 0.6
LEARNED_EVENT_WEIGHT = 1.5

SlotKey = tuple[int, int]


@dataclass
class PatternSourceEvent:
    ymd: str
    event: ScheduledEvent


@dataclass
class PatternSlot:
    day_of_week: int
    slot_start_minutes: int
    slot_end_minutes: int
    category: str
    title: str
    confidence: float
    sample_count: int
    avg_duration_minutes: float


@dataclass
class PatternIndex:
    slots: dict[SlotKey, PatternSlot] = field(default_factory=dict)


@dataclass
class PatternSummary:
    confidence: float
    sample_count: int
    typical_category: str
    deviation: bool


@dataclass
class PatternAnomaly:
    start_minutes: int
    end_minutes: int
    expected_category: str
    actual_category: str
    confidence: float


@dataclass
class DailyPatternAnomalyReport:
    ymd: str
    anomaly_score: float
    anomalies: list[PatternAnomaly]
    slot_count: int


@dataclass
class PatternPrediction:
    start_minutes: int
    end_minutes: int
    category: str
    title: str
    confidence: float


def _day_of_week_or_none(ymd: str) -> Optional[int]:
    try:
        return day_of_week(ymd)
    except ValueError:
        logger.debug("Ignoring malformed ymd %r", ymd)
        return None


def slot_start_for(minutes: int) -> int:
    return (minutes // SLOT_MINUTES) * SLOT_MINUTES


def build_pattern_index(entries: list[PatternSourceEvent]) -> PatternIndex:
    """Learn slot winners from history; user-confirmed events weigh 1.5x."""

    votes: dict[SlotKey, dict[tuple[str, str], float]] = {}
    totals: dict[SlotKey, float] = {}
    durations: dict[SlotKey, float] = {}

    for entry in entries:
        dow = _day_of_week_or_none(entry.ymd)
        event = entry.event
        if dow is None or not 0 <= event.start_minutes < MINUTES_PER_DAY:
            continue
        key = (dow, slot_start_for(event.start_minutes))
        title = (event.title or "").strip() or "Actual"
        weight = LEARNED_EVENT_WEIGHT if (event.meta or {}).get("learnedFrom") else 1.0

        slot_votes = votes.setdefault(key, {})
        slot_votes[(event.category, title)] = slot_votes.get((event.category, title), 0.0) + weight
        totals[key] = totals.get(key, 0.0) + weight
        durations[key] = durations.get(key, 0.0) + event.duration * weight

    slots = {}
    for key, slot_votes in votes.items():
        total = totals[key]
        if total <= 0:
            continue
        (category, title), winner = max(slot_votes.items(), key=lambda item: item[1])
        dow, slot_start = key
        slots[key] = PatternSlot(
            day_of_week=dow,
            slot_start_minutes=slot_start,
            slot_end_minutes=slot_start + SLOT_MINUTES,
            category=category,
            title=title,
            confidence=winner / total,
            sample_count=round(total),
            avg_duration_minutes=durations[key] / total,
        )

    logger.info("Built pattern index", extra={"timeline_entries": len(entries), "timeline_slots": len(slots)})
    return PatternIndex(slots=slots)


def pattern_index_from_slots(slots: list[PatternSlot]) -> PatternIndex:
    return PatternIndex(slots={(slot.day_of_week, slot.slot_start_minutes): slot for slot in slots})


def serialize_pattern_index(index: Optional[PatternIndex]) -> list[PatternSlot]:
    if index is None:
        return []
    return sorted(index.slots.values(), key=lambda slot: (slot.day_of_week, slot.slot_start_minutes))


def get_pattern_suggestion_for_range(
    index: Optional[PatternIndex], ymd: str, start_minutes: int, end_minutes: int
) -> Optional[PatternSlot]:
    """Most confident slot among those the range touches on the day's weekday."""

    if index is None:
        return None
    dow = _day_of_week_or_none(ymd)
    if dow is None:
        return None

    best = None
    bucket = slot_start_for(start_minutes)
    while bucket < end_minutes:
        slot = index.slots.get((dow, bucket))
        if slot is not None and (best is None or slot.confidence > best.confidence):
            best = slot
        bucket += SLOT_MINUTES
    return best


def build_pattern_summary(
    index: Optional[PatternIndex], ymd: str, start_minutes: int, end_minutes: int, current_category: str
) -> Optional[PatternSummary]:
    suggestion = get_pattern_suggestion_for_range(index, ymd, start_minutes, end_minutes)
    if suggestion is None:
        return None
    return PatternSummary(
        confidence=suggestion.confidence,
        sample_count=suggestion.sample_count,
        typical_category=suggestion.category,
        deviation=suggestion.category != current_category and suggestion.confidence >= MIN_CONFIDENCE,
    )


def apply_pattern_suggestions(
    events: list[ScheduledEvent], index: Optional[PatternIndex], ymd: str, min_confidence: float = MIN_CONFIDENCE
) -> list[ScheduledEvent]:
    """Relabel unknown events with the learned slot when it is confident enough."""

    if index is None:
        return list(events)

    result = []
    for event in events:
        if event.category != "unknown":
            result.append(event)
            continue
        suggestion = get_pattern_suggestion_for_range(index, ymd, event.start_minutes, event.end_minutes)
        if suggestion is None or suggestion.confidence < min_confidence:
            result.append(event)
            continue
        meta = dict(event.meta or {})
        meta.update(
            {
                "category": suggestion.category,
                "source": "derived",
                "kind": "pattern_gap",
                "confidence": suggestion.confidence,
            }
        )
        result.append(replace(event, title=suggestion.title, category=suggestion.category, meta=meta))
    return result


def _actual_category_for_slot(events: list[ScheduledEvent], start: int, end: int) -> str:
    best_overlap = 0
    best_category = "unknown"
    for event in events:
        overlap = min(end, event.end_minutes) - max(start, event.start_minutes)
        if overlap > best_overlap:
            best_overlap = overlap
            best_category = event.category
    return best_category


def build_daily_pattern_anomalies(
    actual_events: list[ScheduledEvent],
    index: Optional[PatternIndex],
    ymd: str,
    min_confidence: float = MIN_CONFIDENCE,
) -> Optional[DailyPatternAnomalyReport]:
    """Flag confident slots whose observed category disagrees with the learned one."""

    if index is None:
        return None
    dow = _day_of_week_or_none(ymd)
    if dow is None:
        return None

    anomalies = []
    slot_count = 0
    for slot_start in range(0, MINUTES_PER_DAY, SLOT_MINUTES):
        slot = index.slots.get((dow, slot_start))
        if slot is None or slot.confidence < min_confidence:
            continue
        slot_count += 1
        slot_end = slot_start + SLOT_MINUTES
        actual = _actual_category_for_slot(actual_events, slot_start, slot_end)
        if actual != slot.category and actual != "unknown":
            anomalies.append(PatternAnomaly(slot_start, slot_end, slot.category, actual, slot.confidence))

    return DailyPatternAnomalyReport(
        ymd=ymd,
        anomaly_score=len(anomalies) / slot_count if slot_count else 0.0,
        anomalies=anomalies,
        slot_count=slot_count,
    )


def build_pattern_predictions(
    index: Optional[PatternIndex], ymd: str, min_confidence: float = MIN_CONFIDENCE
) -> list[PatternPrediction]:
    """Expected schedule for ``ymd`` from its weekday's confident slots."""

    if index is None:
        return []
    dow = _day_of_week_or_none(ymd)
    if dow is None:
        return []
    slots = sorted(
        (slot for slot in index.slots.values() if slot.day_of_week == dow and slot.confidence >= min_confidence),
        key=lambda slot: slot.slot_start_minutes,
    )
    return [
        PatternPrediction(slot.slot_start_minutes, slot.slot_end_minutes, slot.category, slot.title, slot.confidence)
        for slot in slots
    ]


def build_pattern_snapshot(
    index: Optional[PatternIndex], window_start_ymd: str, window_end_ymd: str, generated_at: datetime
) -> dict:
    """Persistable form of an index, keyed by the history window it was learned from."""

    return {
        "window_start_ymd": window_start_ymd,
        "window_end_ymd": window_end_ymd,
        "generated_at": generated_at.isoformat(),
        "slots": [asdict(slot) for slot in serialize_pattern_index(index)],
    }


def pattern_index_from_snapshot(snapshot: dict) -> PatternIndex:
    slots = []
    for position, raw in enumerate(snapshot.get("slots", []), start=1):
        try:
            slots.append(
                PatternSlot(
                    day_of_week=int(raw["day_of_week"]),
                    slot_start_minutes=int(raw["slot_start_minutes"]),
                    slot_end_minutes=int(raw["slot_end_minutes"]),
                    category=str(raw["category"]),
                    title=str(raw["title"]),
                    confidence=float(raw["confidence"]),
                    sample_count=int(raw["sample_count"]),
                    avg_duration_minutes=float(raw["avg_duration_minutes"]),
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Invalid pattern slot at item {position}: {exc}") from exc
    return pattern_index_from_slots(slots)
