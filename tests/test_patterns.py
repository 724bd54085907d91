from datetime import datetime, timezone

import pytest
from hypothesis import given
from hypothesis import strategies as st

from timeline_engine.patterns import (
    PatternSourceEvent,
    apply_pattern_suggestions,
    build_daily_pattern_anomalies,
    build_pattern_index,
    build_pattern_predictions,
    build_pattern_snapshot,
    build_pattern_summary,
    get_pattern_suggestion_for_range,
    pattern_index_from_snapshot,
    serialize_pattern_index,
)
from timeline_engine.schema import ScheduledEvent
from timeline_engine.timeline import fill_unknown_gaps

TUESDAY = "2025-03-04"


def entry(ymd, event_id, start, duration, category, title, meta=None):
    return PatternSourceEvent(ymd, ScheduledEvent(event_id, title, start, duration, category, meta=dict(meta or {})))


def sample_history():
    return [
        entry("2025-02-11", "h1", 540, 120, "work", "Deep work"),
        entry("2025-02-18", "h2", 540, 100, "work", "Deep work"),
        entry("2025-02-25", "h3", 545, 110, "work", "Deep work"),
        entry("2025-02-25", "h4", 550, 30, "meal", "Brunch"),
        entry("2025-02-26", "h5", 540, 60, "health", "Gym"),
    ]


def test_build_pattern_index_learns_slot_winner():
    index = build_pattern_index(sample_history())

    slot = index.slots[(2, 540)]
    assert slot.category == "work"
    assert slot.title == "Deep work"
    assert slot.confidence == 0.75
    assert slot.sample_count == 4
    assert slot.slot_end_minutes == 570
    assert index.slots[(3, 540)].category == "health"


def test_user_confirmed_events_weigh_more():
    index = build_pattern_index(
        [
            entry("2025-02-11", "a", 600, 30, "work", "Work"),
            entry("2025-02-18", "b", 600, 30, "meal", "Lunch", {"learnedFrom": "user"}),
        ]
    )
    slot = index.slots[(2, 600)]
    assert slot.category == "meal"
    assert abs(slot.confidence - 0.6) < 1e-9


def test_malformed_entries_are_ignored():
    index = build_pattern_index(
        [entry("not-a-date", "a", 540, 30, "work", "Work"), entry("2025-02-11", "b", 1500, 30, "work", "Work")]
    )
    assert index.slots == {}


def test_suggestion_lookup():
    index = build_pattern_index(sample_history())

    assert get_pattern_suggestion_for_range(index, TUESDAY, 550, 600).category == "work"
    assert get_pattern_suggestion_for_range(index, TUESDAY, 600, 660) is None
    assert get_pattern_suggestion_for_range(None, TUESDAY, 540, 600) is None
    assert get_pattern_suggestion_for_range(index, "2025/03/04", 540, 600) is None


def test_pattern_summary_flags_deviation():
    index = build_pattern_index(sample_history())

    summary = build_pattern_summary(index, TUESDAY, 540, 570, "meal")
    assert summary.typical_category == "work"
    assert summary.deviation

    assert not build_pattern_summary(index, TUESDAY, 540, 570, "work").deviation
    assert build_pattern_summary(index, TUESDAY, 900, 930, "work") is None


def test_apply_pattern_suggestions_relabels_confident_gaps():
    index = build_pattern_index(sample_history())
    timeline = [ScheduledEvent("a", "Email", 0, 540, "work")] + fill_unknown_gaps(
        [ScheduledEvent("a", "Email", 0, 540, "work"), ScheduledEvent("b", "Call", 570, 870, "meeting")]
    )

    relabeled = apply_pattern_suggestions(timeline, index, TUESDAY)

    gap = next(event for event in relabeled if event.start_minutes == 540)
    assert gap.category == "work"
    assert gap.title == "Deep work"
    assert gap.meta["kind"] == "pattern_gap"
    assert gap.meta["confidence"] == 0.75
    assert relabeled[0] is timeline[0]

    strict = apply_pattern_suggestions(timeline, index, TUESDAY, min_confidence=0.8)
    assert next(event for event in strict if event.start_minutes == 540).category == "unknown"
    assert apply_pattern_suggestions(timeline, None, TUESDAY) == timeline


def test_daily_anomalies():
    index = build_pattern_index(sample_history())

    report = build_daily_pattern_anomalies([ScheduledEvent("x", "Brunch", 540, 30, "meal")], index, TUESDAY)
    assert report.slot_count == 1
    assert report.anomaly_score == 1.0
    assert report.anomalies[0].expected_category == "work"
    assert report.anomalies[0].actual_category == "meal"

    quiet = build_daily_pattern_anomalies([ScheduledEvent("y", "Unknown", 540, 30, "unknown")], index, TUESDAY)
    assert quiet.anomalies == []
    assert quiet.anomaly_score == 0.0

    assert build_daily_pattern_anomalies([], None, TUESDAY) is None


def test_predictions_for_weekday():
    predictions = build_pattern_predictions(build_pattern_index(sample_history()), TUESDAY)
    assert [(p.start_minutes, p.end_minutes, p.category) for p in predictions] == [(540, 570, "work")]
    assert build_pattern_predictions(None, TUESDAY) == []


def test_snapshot_round_trip_and_validation():
    index = build_pattern_index(sample_history())
    snapshot = build_pattern_snapshot(index, "2025-02-01", "2025-03-01", datetime(2025, 3, 2, tzinfo=timezone.utc))

    assert snapshot["window_start_ymd"] == "2025-02-01"
    assert [slot["day_of_week"] for slot in snapshot["slots"]] == [2, 3]

    restored = pattern_index_from_snapshot(snapshot)
    assert serialize_pattern_index(restored) == serialize_pattern_index(index)

    with pytest.raises(ValueError, match="item 1"):
        pattern_index_from_snapshot({"slots": [{"day_of_week": 2}]})


@given(
    st.lists(
        st.tuples(
            st.sampled_from(["2025-02-10", "2025-02-11", "2025-02-12"]),
            st.integers(min_value=0, max_value=1439),
            st.integers(min_value=1, max_value=120),
            st.sampled_from(["work", "meal", "health", "digital"]),
            st.booleans(),
        ),
        max_size=40,
    )
)
def test_slot_confidence_is_a_share(raw):
    entries = [
        entry(ymd, f"e{i}", start, duration, category, category.title(), {"learnedFrom": "user"} if learned else None)
        for i, (ymd, start, duration, category, learned) in enumerate(raw)
    ]
    for slot in build_pattern_index(entries).slots.values():
        assert 0.0 < slot.confidence <= 1.0
        assert slot.sample_count >= 1
