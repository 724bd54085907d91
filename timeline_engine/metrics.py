"""Day-level verification metrics."""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass

from timeline_engine.verification import ScreenTimeEvidence, VerificationResult


@dataclass
class DaySummary:
    verified: int = 0
    partial: int = 0
    unverified: int = 0
    contradicted: int = 0
    distracted: int = 0
    total_planned: int = 0
    adherence_score: int = 100
    distraction_minutes: float = 0.0


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def build_day_summary(results: dict[str, VerificationResult]) -> DaySummary:
    """Aggregate per-event verification results into status counts and an adherence score."""

    counts = Counter(result.status for result in results.values())
    distraction_minutes = 0.0
    for result in results.values():
        screen = result.evidence.screen_time
        if isinstance(screen, ScreenTimeEvidence):
            distraction_minutes += screen.distraction_minutes

    total = len(results)
    if total == 0:
        adherence = 100
    else:
        adherence = _round_half_up((counts["verified"] + 0.5 * counts["partial"]) / total * 100)

    return DaySummary(
        verified=counts["verified"],
        partial=counts["partial"],
        unverified=counts["unverified"],
        contradicted=counts["contradicted"],
        distracted=counts["distracted"],
        total_planned=total,
        adherence_score=max(0, min(100, adherence)),
        distraction_minutes=distraction_minutes,
    )
