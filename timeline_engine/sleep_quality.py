"""Sleep quality scoring from daily health metrics."""

from __future__ import annotations

from dataclasses import dataclass

from timeline_engine.schema import HealthDailyRow

TARGET_SLEEP_MINUTES = 480


@dataclass
class SleepQuality:
    quality_score: int
    asleep_minutes: float | None
    hrv_ms: float | None
    resting_bpm: float | None


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def score_sleep_quality(daily: HealthDailyRow | None) -> SleepQuality | None:
    """Score last night's sleep on 0-100, or None when no metric is available."""

    if daily is None:
        return None

    asleep_minutes = daily.sleep_asleep_seconds / 60.0 if daily.sleep_asleep_seconds is not None else None
    hrv_ms = daily.hrv_sdnn_seconds * 1000.0 if daily.hrv_sdnn_seconds is not None else None
    resting_bpm = daily.resting_heart_rate_avg_bpm
    if resting_bpm is None:
        resting_bpm = daily.heart_rate_avg_bpm

    if asleep_minutes is None and hrv_ms is None and resting_bpm is None:
        return None

    score = 50.0
    if asleep_minutes is not None:
        score = _clamp(asleep_minutes / TARGET_SLEEP_MINUTES * 60 + 40, 0, 100)
    if hrv_ms is not None:
        score += _clamp((hrv_ms - 20) / 40 * 15, 0, 15)
    if resting_bpm is not None:
        score += _clamp((70 - resting_bpm) / 20 * 10, -10, 10)

    return SleepQuality(
        quality_score=int(_clamp(round(score), 0, 100)),
        asleep_minutes=asleep_minutes,
        hrv_ms=hrv_ms,
        resting_bpm=resting_bpm,
    )
