"""Verification of planned events against the day's evidence.

Each planned event is scored against the evidence types its category's rule
lists (location, screen time, workouts, sleep). The weighted score becomes the
confidence; explicit contradictions and distraction take precedence over the
score thresholds.

`generate_actual_blocks` goes the other way: it proposes actual blocks for
time the plan does not cover, so that nothing observed is silently dropped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import tzinfo
from typing import Optional, Union

from timeline_engine.app_classification import (
    DISTRACTION_APPS,
    AppCategoryOverride,
    app_matches_list,
    classify_app_usage,
)
from timeline_engine.evidence import (
    calculate_overlap_minutes,
    find_overlapping_locations,
    find_overlapping_sessions,
    find_overlapping_workouts,
    interval_minutes,
)
from timeline_engine.schema import (
    MINUTES_PER_DAY,
    Absent,
    EvidenceBundle,
    HealthWorkoutRow,
    LocationHourlyRow,
    ScheduledEvent,
    ScreenTimeSessionRow,
    day_start,
    minutes_since,
)
from timeline_engine.sleep_quality import score_sleep_quality
from timeline_engine.verification_rules import (
    DEFAULT_MAX_SCREEN_TIME_MINUTES,
    VerificationRule,
    get_verification_rule,
)

logger = logging.getLogger(__name__)

MIN_SCREEN_TIME_BLOCK_MINUTES = 10
SCREEN_TIME_GAP_MINUTES = 15
LOCATION_BLOCK_DENSE_SAMPLES = 6

NO_EVIDENCE = Absent("no overlapping evidence")


@dataclass(frozen=True)
class VerificationThresholds:
    verified_min: float = 0.7
    partial_min: float = 0.3
    timing_variance_minutes: float = 15


DEFAULT_VERIFICATION_THRESHOLDS = VerificationThresholds()

_THRESHOLDS_BY_STRICTNESS = {
    "lenient": VerificationThresholds(verified_min=0.6, partial_min=0.2, timing_variance_minutes=20),
    "default": DEFAULT_VERIFICATION_THRESHOLDS,
    "strict": VerificationThresholds(verified_min=0.8, partial_min=0.4, timing_variance_minutes=10),
}


def thresholds_for_strictness(strictness: Optional[str]) -> VerificationThresholds:
    return _THRESHOLDS_BY_STRICTNESS.get(strictness or "default", DEFAULT_VERIFICATION_THRESHOLDS)


@dataclass
class LocationEvidence:
    place_label: Optional[str]
    place_category: Optional[str]
    sample_count: int
    matches_expected: bool


@dataclass
class ScreenTimeEvidence:
    total_minutes: float
    distraction_minutes: float
    top_apps: list[tuple[str, float]]
    was_distracted: bool


@dataclass
class HealthEvidence:
    has_workout: bool
    workout_type: Optional[str]
    workout_duration_minutes: int


@dataclass
class EvidenceSummary:
    location: Union[LocationEvidence, Absent] = NO_EVIDENCE
    screen_time: Union[ScreenTimeEvidence, Absent] = NO_EVIDENCE
    health: Union[HealthEvidence, Absent] = NO_EVIDENCE


@dataclass
class TimingVariance:
    early_minutes: Optional[float] = None
    late_minutes: Optional[float] = None
    extended_minutes: Optional[float] = None
    shortened_minutes: Optional[float] = None

    @property
    def has_variance(self) -> bool:
        return any(
            value is not None
            for value in (self.early_minutes, self.late_minutes, self.extended_minutes, self.shortened_minutes)
        )


@dataclass
class VerificationResult:
    event_id: str
    status: str
    confidence: float
    evidence: EvidenceSummary
    coverage: float = 0.0
    reason: str = ""
    suggestions: list[str] = field(default_factory=list)
    timing: Optional[TimingVariance] = None


@dataclass
class ActualBlock:
    id: str
    title: str
    description: str
    category: str
    start_minutes: int
    end_minutes: int
    source: str
    confidence: float
    evidence: EvidenceSummary = field(default_factory=EvidenceSummary)


def _union_length(intervals: list[tuple[float, float]]) -> float:
    total = 0.0
    current_start = current_end = None
    for start, end in sorted(intervals):
        if end <= start:
            continue
        if current_end is None or start > current_end:
            if current_end is not None:
                total += current_end - current_start
            current_start, current_end = start, end
        else:
            current_end = max(current_end, end)
    if current_end is not None:
        total += current_end - current_start
    return total


def _clip(intervals, start: float, end: float) -> list[tuple[float, float]]:
    return [(max(start, a), min(end, b)) for a, b in intervals if min(end, b) > max(start, a)]


def _is_distraction(app_name: str, rule: VerificationRule, overrides) -> bool:
    if rule.allowed_apps and app_matches_list(app_name, list(rule.allowed_apps)):
        return False
    if "*" in rule.distraction_apps:
        return True
    classification = classify_app_usage(app_name, overrides)
    if rule.distraction_apps and app_matches_list(app_name, list(rule.distraction_apps)):
        return classification.category != "work"
    return classification.is_distraction


def _summarize_screen_time(event, sessions, midnight, rule, overrides, distraction_threshold):
    usage: dict[str, float] = {}
    total = 0.0
    distraction = 0.0
    for session in sessions:
        session_start, session_end = interval_minutes(session.started_at, session.ended_at, midnight)
        overlap = calculate_overlap_minutes(event.start_minutes, event.end_minutes, session_start, session_end)
        name = session.app_name
        usage[name] = usage.get(name, 0.0) + overlap
        total += overlap
        if _is_distraction(name, rule, overrides):
            distraction += overlap

    top_apps = sorted(usage.items(), key=lambda item: item[1], reverse=True)[:5]
    return ScreenTimeEvidence(
        total_minutes=total,
        distraction_minutes=distraction,
        top_apps=top_apps,
        was_distracted=distraction > rule.distraction_limit(distraction_threshold),
    )


def _location_contradicts_event(event, locations, midnight) -> bool:
    """True when every labelled hour names another place and those hours span the whole event."""

    if not event.location:
        return False
    labelled = [row for row in locations if row.place_label]
    if not labelled:
        return False
    expected = event.location.strip().lower()
    if any(row.place_label.strip().lower() == expected for row in labelled):
        return False
    hours = []
    for row in labelled:
        hour_start = minutes_since(midnight, row.hour_start)
        hours.append((hour_start, hour_start + 60))
    covered = _union_length(_clip(hours, event.start_minutes, event.end_minutes))
    return covered >= event.duration


def _timing_variance(event, locations, midnight, thresholds) -> Optional[TimingVariance]:
    if not locations:
        return None
    starts = [minutes_since(midnight, row.hour_start) for row in locations]
    earliest = min(starts)
    latest = max(starts) + 60
    variance = thresholds.timing_variance_minutes

    def flagged(value: float) -> Optional[float]:
        return value if value >= variance else None

    return TimingVariance(
        early_minutes=flagged(event.start_minutes - earliest),
        late_minutes=flagged(earliest - event.start_minutes),
        extended_minutes=flagged(latest - event.end_minutes),
        shortened_minutes=flagged(event.end_minutes - latest),
    )


def verify_event(
    event: ScheduledEvent,
    bundle: EvidenceBundle,
    ymd: str,
    overrides: Optional[dict[str, AppCategoryOverride]] = None,
    thresholds: VerificationThresholds = DEFAULT_VERIFICATION_THRESHOLDS,
    tz: Optional[tzinfo] = None,
    distraction_threshold_minutes: Optional[float] = None,
) -> VerificationResult:
    """Verify one planned event against the evidence bundle for ``ymd``."""

    rule = get_verification_rule(event.category)
    midnight = day_start(ymd, tz)
    start, end = event.start_minutes, event.end_minutes

    locations = find_overlapping_locations(start, end, bundle.location_hourly, midnight)
    sessions = find_overlapping_sessions(start, end, bundle.screen_time_sessions, midnight)
    workouts = find_overlapping_workouts(start, end, bundle.health_workouts, midnight)

    evidence = EvidenceSummary()
    if not locations and not sessions and not workouts:
        return VerificationResult(event.id, "unverified", 0.0, evidence, 0.0, "No evidence available")

    spans = []
    for row in locations:
        hour_start = minutes_since(midnight, row.hour_start)
        spans.append((hour_start, hour_start + 60))
    spans += [interval_minutes(row.started_at, row.ended_at, midnight) for row in sessions]
    spans += [interval_minutes(row.started_at, row.ended_at, midnight) for row in workouts]
    coverage = min(1.0, _union_length(_clip(spans, start, end)) / event.duration) if event.duration > 0 else 0.0

    total_score = 0.0
    max_score = 0.0
    reasons: list[str] = []
    suggestions: list[str] = []
    contradicted = False

    if "location" in rule.verify_with:
        weight = rule.weight("location")
        max_score += weight
        if locations:
            primary = max(locations, key=lambda row: row.sample_count)
            category = primary.place_category.lower() if primary.place_category else None
            matches = rule.location_matches(category)
            evidence.location = LocationEvidence(
                place_label=primary.place_label,
                place_category=category,
                sample_count=sum(row.sample_count for row in locations),
                matches_expected=matches,
            )
            where = primary.place_label or category
            if matches:
                total_score += weight
                reasons.append(f"At {where or 'expected location'}")
            elif rule.location_required:
                contradicted = True
                expected = "/".join(place for place in rule.location_expected if place)
                reasons.append(f"Expected {expected} but was at {where or 'unknown'}")
            else:
                total_score += weight * 0.3
                reasons.append(f"At {where or 'unknown location'}")
        else:
            reasons.append("No location data available")

    if _location_contradicts_event(event, locations, midnight):
        contradicted = True
        reasons.append(f"Planned at {event.location} but location shows somewhere else")

    if "screen_time" in rule.verify_with:
        weight = rule.weight("screen_time")
        max_score += weight
        if sessions:
            screen = _summarize_screen_time(event, sessions, midnight, rule, overrides, distraction_threshold_minutes)
            evidence.screen_time = screen
            if rule.requires_screen_time:
                if screen.total_minutes > 0:
                    total_score += weight
                    reasons.append(f"{round(screen.total_minutes)} min screen time")
                else:
                    reasons.append("Expected screen time but none detected")
            elif screen.was_distracted:
                reasons.append(f"{round(screen.distraction_minutes)} min on distracting apps")
                suggestions.append(f"Consider putting phone away during {event.category} time")
            elif screen.total_minutes <= (rule.max_screen_time_minutes or DEFAULT_MAX_SCREEN_TIME_MINUTES):
                total_score += weight
                reasons.append("Minimal phone usage")
            else:
                total_score += weight * 0.5
                reasons.append(f"{round(screen.total_minutes)} min phone usage")
        elif rule.requires_screen_time:
            reasons.append("No screen time data available")
        else:
            total_score += weight * 0.8
            reasons.append("No phone usage detected")

    if "health_workout" in rule.verify_with or workouts:
        weight = rule.weight("health_workout")
        if "health_workout" in rule.verify_with:
            max_score += weight
        if workouts:
            workout = workouts[0]
            duration = round(workout.duration_seconds / 60)
            evidence.health = HealthEvidence(True, workout.activity_type, duration)
            if rule.workout_contradicts_if_during:
                contradicted = True
                reasons.append(f"Working out during {event.category}")
            elif rule.requires_workout:
                total_score += weight
                reasons.append(f"{workout.activity_type or 'Workout'} for {duration} min")
            elif "health_workout" in rule.verify_with:
                total_score += weight * 0.5
                reasons.append(f"Also did a {workout.activity_type or 'workout'}")
        elif rule.requires_workout:
            evidence.health = HealthEvidence(False, None, 0)
            reasons.append("No workout detected")
            suggestions.append("Track your workout in the Health app for verification")

    if "health_sleep" in rule.verify_with:
        sleep = score_sleep_quality(bundle.health_daily)
        if sleep is not None and sleep.asleep_minutes:
            weight = rule.weight("health_sleep")
            max_score += weight
            total_score += weight * sleep.quality_score / 100
            reasons.append(f"Slept {round(sleep.asleep_minutes)} min")

    confidence = total_score / max_score if max_score > 0 else 0.0
    screen = evidence.screen_time
    distracted = isinstance(screen, ScreenTimeEvidence) and screen.was_distracted and event.category != "digital"

    if contradicted:
        status = "contradicted"
    elif distracted:
        status = "distracted"
    elif confidence >= thresholds.verified_min:
        status = "verified"
    elif confidence >= thresholds.partial_min:
        status = "partial"
    else:
        status = "unverified"

    return VerificationResult(
        event_id=event.id,
        status=status,
        confidence=confidence,
        evidence=evidence,
        coverage=coverage,
        reason=". ".join(reasons) or "No evidence available",
        suggestions=suggestions,
        timing=_timing_variance(event, locations, midnight, thresholds),
    )


def verify_planned_events(
    planned: list[ScheduledEvent],
    bundle: EvidenceBundle,
    ymd: str,
    overrides: Optional[dict[str, AppCategoryOverride]] = None,
    thresholds: Optional[VerificationThresholds] = None,
    tz: Optional[tzinfo] = None,
    distraction_threshold_minutes: Optional[float] = None,
) -> dict[str, VerificationResult]:
    thresholds = thresholds or DEFAULT_VERIFICATION_THRESHOLDS
    results = {}
    for event in planned:
        results[event.id] = verify_event(
            event, bundle, ymd, overrides, thresholds, tz, distraction_threshold_minutes
        )
    logger.debug("Verified %d planned events for %s", len(results), ymd)
    return results


def place_to_category(place_category: Optional[str]) -> str:
    return {
        "home": "routine",
        "office": "work",
        "gym": "health",
        "restaurant": "meal",
        "cafe": "meal",
    }.get((place_category or "").lower(), "unknown")


def _location_blocks(rows: list[LocationHourlyRow], midnight) -> list[ActualBlock]:
    blocks: list[ActualBlock] = []
    current = None
    current_key = None
    for row in sorted(rows, key=lambda r: r.hour_start):
        start = math.floor(minutes_since(midnight, row.hour_start))
        if start < 0 or start >= MINUTES_PER_DAY:
            continue
        label = row.place_label or row.place_category or ""
        key = row.place_id or f"{label}:{row.place_category or 'unknown'}".lower()
        if current is not None and current_key == key and current.end_minutes == start:
            current.end_minutes = start + 60
            current.evidence.location.sample_count += row.sample_count
            continue
        current = ActualBlock(
            id=f"loc_{start}",
            title=label,
            description=row.place_category or "",
            category=place_to_category(row.place_category),
            start_minutes=start,
            end_minutes=start + 60,
            source="location",
            confidence=0.0,
            evidence=EvidenceSummary(location=LocationEvidence(label, row.place_category, row.sample_count, True)),
        )
        current_key = key
        blocks.append(current)

    labelled = [block for block in blocks if block.title]
    for block in labelled:
        samples = block.evidence.location.sample_count
        block.id = f"loc_{block.start_minutes}_{block.end_minutes}"
        block.end_minutes = min(MINUTES_PER_DAY, block.end_minutes)
        block.confidence = 0.7 if samples >= LOCATION_BLOCK_DENSE_SAMPLES else 0.55
    return labelled


def _workout_blocks(workouts: list[HealthWorkoutRow], midnight, planned) -> list[ActualBlock]:
    blocks = []
    for workout in workouts:
        start, end = interval_minutes(workout.started_at, workout.ended_at, midnight)
        start, end = math.floor(start), math.floor(end)
        covered = any(
            event.category == "health" and event.start_minutes <= start and event.end_minutes >= end
            for event in planned
        )
        if covered:
            continue
        minutes = round(workout.duration_seconds / 60)
        blocks.append(
            ActualBlock(
                id=f"workout_{workout.id}",
                title=workout.activity_type or "Workout",
                description=f"{minutes} min",
                category="health",
                start_minutes=max(0, start),
                end_minutes=min(MINUTES_PER_DAY, end),
                source="workout",
                confidence=0.85,
                evidence=EvidenceSummary(health=HealthEvidence(True, workout.activity_type, minutes)),
            )
        )
    return blocks


def _screen_time_blocks(sessions: list[ScreenTimeSessionRow], midnight, planned, overrides) -> list[ActualBlock]:
    groups: list[dict] = []
    current = None
    for session in sorted(sessions, key=lambda s: s.started_at):
        start, end = interval_minutes(session.started_at, session.ended_at, midnight)
        start, end = math.floor(start), math.floor(end)
        planned_digital = any(
            event.category in ("digital", "comm") and event.start_minutes <= start and event.end_minutes >= end
            for event in planned
        )
        if planned_digital:
            continue

        minutes = session.duration_seconds / 60
        name = session.app_name
        distraction = minutes if app_matches_list(name, DISTRACTION_APPS) else 0.0
        if current is not None and start - current["end"] <= SCREEN_TIME_GAP_MINUTES:
            current["end"] = max(current["end"], min(MINUTES_PER_DAY, end))
            current["minutes"] += minutes
            current["distraction"] += distraction
            current["usage"][name] = current["usage"].get(name, 0.0) + minutes
        else:
            current = {
                "start": max(0, start),
                "end": min(MINUTES_PER_DAY, end),
                "minutes": minutes,
                "distraction": distraction,
                "usage": {name: minutes},
            }
            groups.append(current)

    blocks = []
    for group in groups:
        if group["minutes"] < MIN_SCREEN_TIME_BLOCK_MINUTES:
            continue
        top_apps = sorted(group["usage"].items(), key=lambda item: item[1], reverse=True)[:3]
        top_app = top_apps[0][0] if top_apps else "Phone usage"
        classification = classify_app_usage(top_app, overrides)
        blocks.append(
            ActualBlock(
                id=f"screen_{group['start']}",
                title=classification.title,
                description=classification.description,
                category=classification.category,
                start_minutes=group["start"],
                end_minutes=group["end"],
                source="screen_time",
                confidence=classification.confidence,
                evidence=EvidenceSummary(
                    screen_time=ScreenTimeEvidence(
                        total_minutes=group["minutes"],
                        distraction_minutes=group["distraction"],
                        top_apps=top_apps,
                        was_distracted=group["distraction"] > 10,
                    )
                ),
            )
        )
    return blocks


def subtract_intervals(start: int, end: int, taken: list[tuple[int, int]]) -> list[tuple[int, int]]:
    """Pieces of [start, end) not covered by any interval in ``taken``."""

    pieces = []
    cursor = start
    for taken_start, taken_end in sorted(taken):
        if taken_end <= cursor or taken_start >= end:
            continue
        if taken_start > cursor:
            pieces.append((cursor, taken_start))
        cursor = max(cursor, taken_end)
        if cursor >= end:
            break
    if cursor < end:
        pieces.append((cursor, end))
    return pieces


def generate_actual_blocks(
    bundle: EvidenceBundle,
    ymd: str,
    planned: list[ScheduledEvent],
    overrides: Optional[dict[str, AppCategoryOverride]] = None,
    tz: Optional[tzinfo] = None,
) -> list[ActualBlock]:
    """Propose non-overlapping actual blocks for time the plan leaves uncovered.

    Location blocks claim time first, then workouts, then screen time.
    """

    midnight = day_start(ymd, tz)
    candidates = (
        _location_blocks(bundle.location_hourly, midnight)
        + _workout_blocks(bundle.health_workouts, midnight, planned)
        + _screen_time_blocks(bundle.screen_time_sessions, midnight, planned, overrides)
    )

    taken = [(event.start_minutes, event.end_minutes) for event in planned]
    blocks: list[ActualBlock] = []
    for candidate in candidates:
        pieces = subtract_intervals(candidate.start_minutes, candidate.end_minutes, taken)
        for index, (piece_start, piece_end) in enumerate(pieces):
            block_id = candidate.id if len(pieces) == 1 else f"{candidate.id}:{index}"
            blocks.append(
                ActualBlock(
                    id=block_id,
                    title=candidate.title,
                    description=candidate.description,
                    category=candidate.category,
                    start_minutes=piece_start,
                    end_minutes=piece_end,
                    source=candidate.source,
                    confidence=candidate.confidence,
                    evidence=candidate.evidence,
                )
            )
            taken.append((piece_start, piece_end))

    blocks.sort(key=lambda block: block.start_minutes)
    return blocks


def actual_block_to_event(block: ActualBlock) -> ScheduledEvent:
    kind = "screen_time" if block.source == "screen_time" else "evidence_block"
    return ScheduledEvent(
        id=f"derived_evidence:{block.id}",
        title=block.title,
        start_minutes=block.start_minutes,
        duration=block.end_minutes - block.start_minutes,
        category=block.category,
        description=block.description,
        meta={
            "source": "evidence",
            "kind": kind,
            "confidence": block.confidence,
            "source_id": block.id,
        },
    )
