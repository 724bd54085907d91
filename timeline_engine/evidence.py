"""Evidence bundle fetching and overlap helpers.

The six sub-sources of a day's evidence are independent and read-only, so
they are fetched concurrently. A failing sub-source degrades to an empty
value and a warning; it never fails the whole bundle.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Optional, Protocol

from timeline_engine.schema import (
    EvidenceBundle,
    HealthDailyRow,
    HealthWorkoutRow,
    LocationHourlyRow,
    LocationSample,
    ScreenTimeSessionRow,
    UserPlace,
    minutes_since,
)

logger = logging.getLogger(__name__)


class EvidenceSource(Protocol):
    async def fetch_location_hourly(self, user_id: str, ymd: str) -> list[LocationHourlyRow]: ...

    async def fetch_location_samples(self, user_id: str, ymd: str) -> list[LocationSample]: ...

    async def fetch_screen_time_sessions(self, user_id: str, ymd: str) -> list[ScreenTimeSessionRow]: ...

    async def fetch_health_workouts(self, user_id: str, ymd: str) -> list[HealthWorkoutRow]: ...

    async def fetch_health_daily(self, user_id: str, ymd: str) -> Optional[HealthDailyRow]: ...

    async def fetch_user_places(self, user_id: str) -> list[UserPlace]: ...


class InMemoryEvidenceSource:
    """Serves pre-built bundles keyed by (user_id, ymd)."""

    def __init__(self, bundles: Optional[dict[tuple[str, str], EvidenceBundle]] = None, places=None):
        self.bundles = dict(bundles or {})
        self.places: dict[str, list[UserPlace]] = dict(places or {})

    def _bundle(self, user_id: str, ymd: str) -> EvidenceBundle:
        return self.bundles.get((user_id, ymd), EvidenceBundle())

    async def fetch_location_hourly(self, user_id, ymd):
        return list(self._bundle(user_id, ymd).location_hourly)

    async def fetch_location_samples(self, user_id, ymd):
        return list(self._bundle(user_id, ymd).location_samples)

    async def fetch_screen_time_sessions(self, user_id, ymd):
        return list(self._bundle(user_id, ymd).screen_time_sessions)

    async def fetch_health_workouts(self, user_id, ymd):
        return list(self._bundle(user_id, ymd).health_workouts)

    async def fetch_health_daily(self, user_id, ymd):
        return self._bundle(user_id, ymd).health_daily

    async def fetch_user_places(self, user_id):
        return list(self.places.get(user_id, []))


async def _safe_fetch(name: str, call: Awaitable[Any], default: Any) -> Any:
    try:
        return await call
    except Exception as exc:
        logger.warning(
            "Evidence fetch for %s failed, continuing without it: %s",
            name,
            exc,
            extra={"timeline_source": name},
        )
        return default


async def fetch_evidence_bundle(source: EvidenceSource, user_id: str, ymd: str) -> EvidenceBundle:
    """Fetch every sub-source for one user and day concurrently."""

    location_hourly, location_samples, sessions, workouts, daily, places = await asyncio.gather(
        _safe_fetch("location_hourly", source.fetch_location_hourly(user_id, ymd), []),
        _safe_fetch("location_samples", source.fetch_location_samples(user_id, ymd), []),
        _safe_fetch("screen_time_sessions", source.fetch_screen_time_sessions(user_id, ymd), []),
        _safe_fetch("health_workouts", source.fetch_health_workouts(user_id, ymd), []),
        _safe_fetch("health_daily", source.fetch_health_daily(user_id, ymd), None),
        _safe_fetch("user_places", source.fetch_user_places(user_id), []),
    )

    bundle = EvidenceBundle(
        location_hourly=list(location_hourly or []),
        location_samples=list(location_samples or []),
        screen_time_sessions=list(sessions or []),
        health_workouts=list(workouts or []),
        health_daily=daily,
        user_places=list(places or []),
    )
    logger.info(
        "Fetched evidence bundle",
        extra={
            "timeline_user_id": user_id,
            "timeline_ymd": ymd,
            "timeline_location_hours": len(bundle.location_hourly),
            "timeline_screen_sessions": len(bundle.screen_time_sessions),
            "timeline_workouts": len(bundle.health_workouts),
        },
    )
    return bundle


def calculate_overlap_minutes(start_a: float, end_a: float, start_b: float, end_b: float) -> float:
    return max(0.0, min(end_a, end_b) - max(start_a, start_b))


def interval_minutes(start: datetime, end: datetime, midnight: datetime) -> tuple[float, float]:
    """Position a [start, end) datetime interval in minutes from ``midnight``."""

    return minutes_since(midnight, start), minutes_since(midnight, end)


def find_overlapping_locations(
    start_minutes: float, end_minutes: float, rows: list[LocationHourlyRow], midnight: datetime
) -> list[LocationHourlyRow]:
    """Location hours whose [hour, hour + 60) window intersects the range."""

    found = []
    for row in rows:
        hour_start = minutes_since(midnight, row.hour_start)
        if hour_start < end_minutes and hour_start + 60 > start_minutes:
            found.append(row)
    return found


def find_overlapping_sessions(
    start_minutes: float, end_minutes: float, sessions: list[ScreenTimeSessionRow], midnight: datetime
) -> list[ScreenTimeSessionRow]:
    found = []
    for session in sessions:
        session_start, session_end = interval_minutes(session.started_at, session.ended_at, midnight)
        if session_start < end_minutes and session_end > start_minutes:
            found.append(session)
    return found


def find_overlapping_workouts(
    start_minutes: float, end_minutes: float, workouts: list[HealthWorkoutRow], midnight: datetime
) -> list[HealthWorkoutRow]:
    found = []
    for workout in workouts:
        workout_start, workout_end = interval_minutes(workout.started_at, workout.ended_at, midnight)
        if workout_start < end_minutes and workout_end > start_minutes:
            found.append(workout)
    return found
