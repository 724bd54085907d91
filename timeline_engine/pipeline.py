"""Per-day evidence reconciliation pipeline."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from timeline_engine.app_classification import AppCategoryOverride
from timeline_engine.config import Config
from timeline_engine.evidence import EvidenceSource, fetch_evidence_bundle
from timeline_engine.metrics import DaySummary, build_day_summary
from timeline_engine.patterns import DailyPatternAnomalyReport, PatternIndex, apply_pattern_suggestions
from timeline_engine.patterns import build_daily_pattern_anomalies
from timeline_engine.schema import EvidenceBundle, RawEvidenceEvent, ScheduledEvent, SessionBlock, day_window
from timeline_engine.sessionizer import raw_events_from_bundle, session_block_to_event, sessionize_window
from timeline_engine.timeline import (
    ActualTimelineBuilder,
    ValidationResult,
    clip_event_to_day,
    fill_unknown_gaps,
)
from timeline_engine.verification import (
    ActualBlock,
    VerificationResult,
    actual_block_to_event,
    generate_actual_blocks,
    thresholds_for_strictness,
    verify_planned_events,
)

logger = logging.getLogger(__name__)


@dataclass
class DayReconciliation:
    ymd: str
    sessions: list[SessionBlock]
    verification: dict[str, VerificationResult]
    summary: DaySummary
    gap_blocks: list[ActualBlock]
    timeline: list[ScheduledEvent]
    anomalies: Optional[DailyPatternAnomalyReport]
    validation: ValidationResult
    stats: dict = field(default_factory=dict)


def _reconcile(events: list[ScheduledEvent], min_duration_minutes: int) -> tuple[list[ScheduledEvent], ValidationResult]:
    builder = ActualTimelineBuilder(min_duration_minutes)
    builder.add_events(events)
    return builder.build(), builder.validate()


def reconcile_day(
    ymd: str,
    planned: list[ScheduledEvent],
    bundle: EvidenceBundle,
    stored_actuals: tuple[ScheduledEvent, ...] | list[ScheduledEvent] = (),
    raw_events: Optional[list[RawEvidenceEvent]] = None,
    pattern_index: Optional[PatternIndex] = None,
    app_overrides: Optional[dict[str, AppCategoryOverride]] = None,
    config: Optional[Config] = None,
    user_id: str = "",
    intent_overrides: Optional[dict[str, str]] = None,
) -> DayReconciliation:
    """Build the actual timeline for ``ymd`` and verify the plan against it.

    ``raw_events`` defaults to the events flattened from ``bundle``. The
    final timeline is the union of stored actuals, session events and gap
    blocks, reconciled by provenance, with unknown gaps filled in and pattern
    suggestions applied to them.
    """

    config = config or Config()
    tz = config.tz
    window_start, window_end = day_window(ymd, tz)

    if raw_events is None:
        raw_events = raw_events_from_bundle(bundle, ymd, tz)
    sessions = sessionize_window(user_id, window_start, window_end, raw_events, intent_overrides, config)
    session_events = [
        event for event in (session_block_to_event(session, window_start) for session in sessions) if event is not None
    ]

    verification = verify_planned_events(
        planned,
        bundle,
        ymd,
        app_overrides,
        thresholds_for_strictness(config.verification_strictness),
        tz,
        config.distraction_threshold_minutes,
    )
    summary = build_day_summary(verification)

    gap_blocks = generate_actual_blocks(bundle, ymd, planned, app_overrides, tz)
    block_events = [actual_block_to_event(block) for block in gap_blocks]

    candidates = []
    for event in list(stored_actuals) + session_events + block_events:
        clipped = clip_event_to_day(event)
        if clipped is not None:
            candidates.append(clipped)

    timeline, _ = _reconcile(candidates, config.min_segment_minutes)
    timeline, validation = _reconcile(
        timeline + fill_unknown_gaps(timeline, config.min_segment_minutes), config.min_segment_minutes
    )
    timeline = apply_pattern_suggestions(timeline, pattern_index, ymd, config.pattern_min_confidence)
    anomalies = build_daily_pattern_anomalies(timeline, pattern_index, ymd, config.pattern_min_confidence)

    if not validation.valid:
        logger.error("Reconciled timeline for %s has %d overlaps", ymd, len(validation.overlaps))

    stats = {
        "raw_events": len(raw_events),
        "sessions": len(sessions),
        "gap_blocks": len(gap_blocks),
        "timeline_events": len(timeline),
        "unknown_events": sum(1 for event in timeline if event.category == "unknown"),
    }
    logger.info(
        "Reconciled day",
        extra={
            "timeline_user_id": user_id,
            "timeline_ymd": ymd,
            "timeline_sessions": stats["sessions"],
            "timeline_events": stats["timeline_events"],
            "timeline_adherence": summary.adherence_score,
        },
    )

    return DayReconciliation(
        ymd=ymd,
        sessions=sessions,
        verification=verification,
        summary=summary,
        gap_blocks=gap_blocks,
        timeline=timeline,
        anomalies=anomalies,
        validation=validation,
        stats=stats,
    )


async def reconcile_day_from_source(
    source: EvidenceSource,
    user_id: str,
    ymd: str,
    planned: list[ScheduledEvent],
    stored_actuals: tuple[ScheduledEvent, ...] | list[ScheduledEvent] = (),
    pattern_index: Optional[PatternIndex] = None,
    app_overrides: Optional[dict[str, AppCategoryOverride]] = None,
    config: Optional[Config] = None,
) -> DayReconciliation:
    bundle = await fetch_evidence_bundle(source, user_id, ymd)
    return reconcile_day(
        ymd,
        planned,
        bundle,
        stored_actuals=stored_actuals,
        pattern_index=pattern_index,
        app_overrides=app_overrides,
        config=config,
        user_id=user_id,
    )
