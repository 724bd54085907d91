import asyncio

from timeline_engine.auto_assign import (
    AutoAssignResult,
    CancellationToken,
    CategorySuggestion,
    auto_assign_blocks,
    describe_block,
)
from timeline_engine.schema import ScheduledEvent

YMD = "2025-03-04"


def unknown(event_id, start, duration=30):
    return ScheduledEvent(event_id, "Unknown", start, duration, "unknown", meta={"source": "derived", "kind": "unknown_gap"})


class ScriptedService:
    def __init__(self, answers, token=None, cancel_after=None):
        self.answers = answers
        self.seen = []
        self.token = token
        self.cancel_after = cancel_after

    async def suggest(self, block):
        self.seen.append(block.event_id)
        if self.token is not None and len(self.seen) == self.cancel_after:
            self.token.cancel()
        answer = self.answers[block.event_id]
        if isinstance(answer, Exception):
            raise answer
        return answer


def test_describe_block():
    event = ScheduledEvent(
        "g1", "Unknown", 600, 45, "unknown", location="Office", meta={"source": "derived", "intent": "work", "user_note": "standup?"}
    )
    block = describe_block(event, YMD)
    assert (block.start_minutes, block.end_minutes) == (600, 645)
    assert block.source == "derived"
    assert block.detected_activity == "work"
    assert block.user_note == "standup?"
    assert block.location == "Office"


def test_auto_assign_applies_confident_suggestions_only():
    events = [
        unknown("g1", 540),
        unknown("g2", 600),
        unknown("g3", 660),
        unknown("g4", 720),
        ScheduledEvent("known", "Work", 780, 60, "work"),
    ]
    service = ScriptedService(
        {
            "g1": CategorySuggestion("work", 0.9, "usually work"),
            "g2": CategorySuggestion("meal", 0.4),
            "g3": CategorySuggestion("gardening", 0.95),
            "g4": RuntimeError("model unavailable"),
        }
    )

    result = asyncio.run(auto_assign_blocks(events, service, YMD))

    assert service.seen == ["g1", "g2", "g3", "g4"]
    assert [event.id for event in result.applied] == ["g1"]
    assert result.applied[0].category == "work"
    assert result.applied[0].meta["ai"]["reason"] == "usually work"
    assert result.applied[0].meta["kind"] == "unknown_gap"
    assert result.skipped == ["g2", "g3"]
    assert result.failed == ["g4"]
    assert not result.cancelled
    assert events[0].category == "unknown"


def test_auto_assign_stops_when_cancelled():
    token = CancellationToken()
    events = [unknown("g1", 540), unknown("g2", 600), unknown("g3", 660)]
    answers = {event.id: CategorySuggestion("work", 0.9) for event in events}
    service = ScriptedService(answers, token=token, cancel_after=1)

    result = asyncio.run(auto_assign_blocks(events, service, YMD, token=token))

    assert result.cancelled
    assert service.seen == ["g1"]
    assert [event.id for event in result.applied] == ["g1"]


def test_auto_assign_applies_incrementally():
    events = [unknown("g1", 540), unknown("g2", 600)]
    service = ScriptedService({"g1": CategorySuggestion("health", 0.8), "g2": CategorySuggestion("meal", 0.7)})
    saved = []

    async def on_applied(event):
        if event.id == "g2":
            raise ConnectionError("write failed")
        saved.append(event.id)

    result = asyncio.run(auto_assign_blocks(events, service, YMD, on_applied=on_applied))

    assert saved == ["g1"]
    assert [event.id for event in result.applied] == ["g1"]
    assert result.failed == ["g2"]


def test_nothing_to_do():
    result = asyncio.run(auto_assign_blocks([], ScriptedService({}), YMD))
    assert result == AutoAssignResult()
