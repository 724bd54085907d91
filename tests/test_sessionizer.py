from datetime import datetime, timedelta, timezone

from timeline_engine.schema import EvidenceBundle, LocationHourlyRow, RawEvidenceEvent, ScreenTimeSessionRow, SessionBlock
from timeline_engine.sessionizer import (
    COMMUTE_CONFIDENCE,
    absorb_short_sessions,
    merge_session_micro_gaps,
    raw_events_from_bundle,
    session_block_to_event,
    sessionize_window,
)

DAY = datetime(2025, 3, 4, tzinfo=timezone.utc)


def at(hour, minute=0):
    return DAY + timedelta(hours=hour, minutes=minute)


def session(source_id, start, end, place_id="office", is_commute=False):
    return SessionBlock(
        source_id=source_id,
        title=source_id,
        start=start,
        end=end,
        place_id=None if is_commute else place_id,
        place_label=None if is_commute else place_id.title(),
        intent="offline",
        confidence=0.7,
        child_event_ids=[source_id],
        is_commute=is_commute,
    )


def location(event_id, start, end, place_id="office", is_commute=False):
    return RawEvidenceEvent(
        id=event_id,
        start=start,
        end=end,
        source="location",
        place_id=place_id,
        place_label=place_id.title() if place_id else None,
        is_commute=is_commute,
    )


def test_merge_single_session_is_unchanged():
    only = session("s1", at(10), at(11))
    assert merge_session_micro_gaps([only]) == [only]


def test_merge_joins_three_minute_gap():
    merged = merge_session_micro_gaps([session("s1", at(10), at(10, 15)), session("s2", at(10, 18), at(10, 45))])

    assert len(merged) == 1
    assert merged[0].start == at(10)
    assert merged[0].end == at(10, 45)
    assert merged[0].source_id == "s1"
    assert merged[0].child_event_ids == ["s1", "s2"]


def test_merge_keeps_six_minute_gap():
    merged = merge_session_micro_gaps([session("s1", at(10), at(10, 15)), session("s2", at(10, 21), at(10, 45))])
    assert [s.source_id for s in merged] == ["s1", "s2"]


def test_merge_never_joins_commutes():
    merged = merge_session_micro_gaps(
        [session("c1", at(8), at(8, 20), is_commute=True), session("c2", at(8, 21), at(8, 40), is_commute=True)]
    )
    assert len(merged) == 2


def test_merge_requires_same_place():
    merged = merge_session_micro_gaps([session("s1", at(10), at(10, 15)), session("s2", at(10, 16), at(10, 45), "cafe")])
    assert len(merged) == 2


def test_merge_gap_limit_is_strict_and_configurable():
    pair = [session("s1", at(10), at(10, 15)), session("s2", at(10, 20), at(10, 45))]

    assert len(merge_session_micro_gaps(pair)) == 2
    assert len(merge_session_micro_gaps(pair, max_gap_minutes=10)) == 1


def test_absorb_short_same_place_session():
    result = absorb_short_sessions([session("long", at(10), at(10, 30)), session("short", at(10, 40), at(10, 45))])

    assert len(result) == 1
    assert result[0].source_id == "long"
    assert result[0].end == at(10, 45)


def test_absorb_uses_following_neighbour_when_needed():
    result = absorb_short_sessions(
        [session("short", at(9, 50), at(9, 55)), session("long", at(10), at(10, 30))]
    )

    assert len(result) == 1
    assert result[0].source_id == "long"
    assert result[0].start == at(9, 50)


def test_absorb_collapses_chain_of_short_sessions():
    result = absorb_short_sessions(
        [
            session("s1", at(10), at(10, 5)),
            session("s2", at(10, 5), at(10, 8)),
            session("s3", at(10, 8), at(10, 30)),
        ]
    )

    assert len(result) == 1
    assert result[0].source_id == "s3"
    assert (result[0].start, result[0].end) == (at(10), at(10, 30))
    assert result[0].child_event_ids == ["s1", "s2", "s3"]


def test_absorb_skips_other_places_and_commutes():
    different_place = absorb_short_sessions([session("office", at(10), at(10, 30)), session("cafe", at(10, 30), at(10, 35), "cafe")])
    assert len(different_place) == 2

    commute = absorb_short_sessions([session("office", at(10), at(10, 30)), session("c", at(10, 30), at(10, 35), is_commute=True)])
    assert len(commute) == 2


def test_absorb_leaves_ten_minute_sessions_alone():
    result = absorb_short_sessions([session("a", at(10), at(10, 30)), session("b", at(10, 40), at(10, 50))])
    assert len(result) == 2


def test_sessionize_merges_micro_gap_at_same_office():
    raw = [location("l1", at(10), at(10, 15)), location("l2", at(10, 18), at(10, 45))]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert len(sessions) == 1
    assert (sessions[0].start, sessions[0].end) == (at(10), at(10, 45))
    assert sessions[0].child_event_ids == ["l1", "l2"]
    assert sessions[0].source_id == f"session:u1:office:{int(at(10).timestamp() * 1000)}"


def test_sessionize_keeps_short_session_at_another_place():
    raw = [location("l1", at(10), at(10, 20)), location("l2", at(10, 20), at(10, 25), "cafe")]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert [(s.place_id, s.start, s.end) for s in sessions] == [
        ("office", at(10), at(10, 20)),
        ("cafe", at(10, 20), at(10, 25)),
    ]


def test_sessionize_ids_are_stable_across_runs():
    raw = [location("l1", at(9), at(10)), location("l2", at(10, 30), at(11), "cafe")]
    first = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)
    second = sessionize_window("u1", DAY, DAY + timedelta(days=1), list(reversed(raw)))
    assert [s.source_id for s in first] == [s.source_id for s in second]


def test_sessionize_clips_to_window_and_joins_same_place_across_gaps():
    raw = [location("l1", DAY - timedelta(hours=1), at(0, 30)), location("l2", at(0, 38), at(1))]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert len(sessions) == 1
    assert (sessions[0].start, sessions[0].end) == (DAY, at(1))
    assert sessions[0].child_event_ids == ["l1", "l2"]


def test_sessionize_same_place_is_one_session_regardless_of_gap():
    raw = [
        location("l1", at(10), at(10, 15)),
        location("l2", at(10, 21), at(10, 45)),
        location("l3", at(13), at(13, 30)),
    ]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert len(sessions) == 1
    assert (sessions[0].start, sessions[0].end) == (at(10), at(13, 30))
    assert sessions[0].child_event_ids == ["l1", "l2", "l3"]


def test_sessionize_splits_on_place_change_and_commute():
    raw = [
        location("l1", at(8), at(8, 30), "home"),
        location("c1", at(8, 30), at(9), None, is_commute=True),
        location("l2", at(9), at(12)),
        location("l3", at(12), at(12, 45), "cafe"),
        location("l4", at(13), at(17)),
    ]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert [(s.place_id, s.is_commute) for s in sessions] == [
        ("home", False),
        (None, True),
        ("office", False),
        ("cafe", False),
        ("office", False),
    ]


def test_sessionize_labels_intent_from_screen_time():
    raw = [
        location("l1", at(10), at(11)),
        RawEvidenceEvent("st1", at(10, 5), at(10, 35), "screen_time", title="Slack", place_id="office", app_id="slack"),
    ]

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)

    assert len(sessions) == 1
    assert sessions[0].intent == "work"
    assert sessions[0].title == "Office - Work"
    assert sessions[0].summary == {"Slack": 1800.0}
    assert abs(sessions[0].confidence - 0.85) < 1e-9


def test_raw_events_from_hourly_rows_tag_commute():
    bundle = EvidenceBundle(
        location_hourly=[
            LocationHourlyRow(at(7), 10, "home", "Home"),
            LocationHourlyRow(at(8), 4),
            LocationHourlyRow(at(9), 12, "office", "Office"),
        ],
        screen_time_sessions=[
            ScreenTimeSessionRow("st-1", "com.slack", at(9, 10), at(9, 40), 1800, display_name="Slack"),
        ],
    )

    raw = raw_events_from_bundle(bundle, "2025-03-04")

    locations = [event for event in raw if event.source == "location"]
    assert [event.is_commute for event in locations] == [False, True, False]
    screen = [event for event in raw if event.source == "screen_time"]
    assert screen[0].id == "screen_time:st-1"
    assert screen[0].place_id == "office"
    assert screen[0].app_id == "com.slack"

    sessions = sessionize_window("u1", DAY, DAY + timedelta(days=1), raw)
    assert [s.is_commute for s in sessions] == [False, True, False]
    commute = sessions[1]
    assert commute.title == "Commute"
    assert commute.confidence == COMMUTE_CONFIDENCE

    commute_event = session_block_to_event(commute, DAY)
    assert commute_event.category == "travel"
    assert (commute_event.start_minutes, commute_event.duration) == (480, 60)
    assert commute_event.meta["kind"] == "session_block"
    assert commute_event.id == commute.source_id


def test_session_block_to_event_clips_to_day():
    late = session("s1", at(23, 30), DAY + timedelta(days=1, hours=1))
    event = session_block_to_event(late, DAY)
    assert (event.start_minutes, event.end_minutes) == (1410, 1440)

    assert session_block_to_event(session("s2", DAY - timedelta(hours=2), DAY - timedelta(hours=1)), DAY) is None
