"""Sequential auto-assign loop for unassigned (unknown) timeline blocks.

Suggestions are awaited one block at a time so that accepted results can be
applied as they arrive and the pass can be cancelled between blocks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Optional, Protocol

from timeline_engine.schema import EVENT_CATEGORIES, ScheduledEvent

logger = logging.getLogger(__name__)


@dataclass
class BlockDescriptor:
    """What a suggestion service gets to see about one block."""

    event_id: str
    ymd: str
    start_minutes: int
    end_minutes: int
    title: str = ""
    description: str = ""
    source: str = ""
    detected_activity: Optional[str] = None
    location: Optional[str] = None
    user_note: Optional[str] = None


@dataclass
class CategorySuggestion:
    category: str
    confidence: float
    reason: str = ""


class SuggestionService(Protocol):
    async def suggest(self, block: BlockDescriptor) -> CategorySuggestion: ...


class CancellationToken:
    """Cooperative cancellation flag checked between iterations."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class AutoAssignResult:
    applied: list[ScheduledEvent] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    cancelled: bool = False


def describe_block(event: ScheduledEvent, ymd: str) -> BlockDescriptor:
    meta = event.meta or {}
    return BlockDescriptor(
        event_id=event.id,
        ymd=ymd,
        start_minutes=event.start_minutes,
        end_minutes=event.end_minutes,
        title=event.title,
        description=event.description,
        source=str(meta.get("source") or ""),
        detected_activity=meta.get("intent"),
        location=event.location,
        user_note=meta.get("user_note"),
    )


async def auto_assign_blocks(
    events: list[ScheduledEvent],
    service: SuggestionService,
    ymd: str,
    min_confidence: float = 0.6,
    token: Optional[CancellationToken] = None,
    on_applied: Optional[Callable[[ScheduledEvent], Awaitable[None]]] = None,
) -> AutoAssignResult:
    """Ask ``service`` for a category for each unknown block and apply confident answers."""

    result = AutoAssignResult()
    pending = [event for event in events if event.category == "unknown"]

    for event in pending:
        if token is not None and token.cancelled:
            result.cancelled = True
            logger.info("Auto-assign cancelled", extra={"timeline_ymd": ymd, "timeline_applied": len(result.applied)})
            break

        try:
            suggestion = await service.suggest(describe_block(event, ymd))
        except Exception:
            logger.exception("Suggestion failed for block %s", event.id)
            result.failed.append(event.id)
            continue

        if suggestion.category not in EVENT_CATEGORIES or suggestion.category == "unknown":
            result.skipped.append(event.id)
            continue
        if suggestion.confidence < min_confidence:
            result.skipped.append(event.id)
            continue

        meta = dict(event.meta or {})
        meta.update(
            {
                "category": suggestion.category,
                "confidence": suggestion.confidence,
                "ai": {"category": suggestion.category, "confidence": suggestion.confidence, "reason": suggestion.reason},
            }
        )
        updated = replace(event, category=suggestion.category, meta=meta)
        if on_applied is not None:
            try:
                await on_applied(updated)
            except Exception:
                logger.exception("Applying suggestion failed for block %s", event.id)
                result.failed.append(event.id)
                continue
        result.applied.append(updated)

    return result
