"""Planned vs actual time allocation."""

from __future__ import annotations

from collections import defaultdict

from timeline_engine.schema import MINUTES_PER_DAY, ScheduledEvent


def minutes_by_category(events: list[ScheduledEvent]) -> dict[str, int]:
    """Minutes per category, counting only the part of each event inside the day."""

    totals: dict[str, int] = defaultdict(int)
    for event in events:
        start = max(0, event.start_minutes)
        end = min(MINUTES_PER_DAY, event.start_minutes + event.duration)
        if end > start:
            totals[event.category] += end - start
    return dict(totals)


def compare_plan_to_actual(planned: list[ScheduledEvent], actual: list[ScheduledEvent]) -> dict:
    """Compare planned and actual minutes per category with absolute and percentage deltas."""

    planned_minutes = minutes_by_category(planned)
    actual_minutes = minutes_by_category(actual)

    def pct_change(old: float, new: float) -> float:
        if old == 0:
            return 0.0
        return ((new - old) / old) * 100.0

    categories = sorted(set(planned_minutes) | set(actual_minutes))
    by_category = {}
    for category in categories:
        plan = planned_minutes.get(category, 0)
        real = actual_minutes.get(category, 0)
        by_category[category] = {
            "planned_minutes": plan,
            "actual_minutes": real,
            "delta_minutes": real - plan,
            "delta_pct": pct_change(plan, real),
        }

    return {
        "planned_minutes": planned_minutes,
        "actual_minutes": actual_minutes,
        "by_category": by_category,
        "total_planned_minutes": sum(planned_minutes.values()),
        "total_actual_minutes": sum(actual_minutes.values()),
    }
