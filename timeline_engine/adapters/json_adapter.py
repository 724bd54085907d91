"""JSON adapter for timeline events and evidence bundles."""

from __future__ import annotations

import json
from datetime import datetime

from timeline_engine.patterns import PatternSourceEvent
from timeline_engine.schema import (
    EVENT_CATEGORIES,
    MINUTES_PER_DAY,
    EvidenceBundle,
    HealthDailyRow,
    HealthWorkoutRow,
    LocationHourlyRow,
    LocationSample,
    ScheduledEvent,
    ScreenTimeSessionRow,
    UserPlace,
)

_REQUIRED_FIELDS = {"id", "title", "start_minutes", "duration"}


def _parse_item(item: dict, index: int) -> ScheduledEvent:
    if not isinstance(item, dict):
        raise ValueError(f"Item {index}: expected an object")
    missing = sorted(field for field in _REQUIRED_FIELDS if item.get(field) in (None, ""))
    if missing:
        raise ValueError(f"Item {index}: missing required fields {missing}")

    try:
        start_minutes = int(item["start_minutes"])
        duration = int(item["duration"])
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Item {index}: start_minutes and duration must be integers") from exc

    if not 0 <= start_minutes < MINUTES_PER_DAY:
        raise ValueError(f"Item {index}: start_minutes {start_minutes} outside the day")
    if duration <= 0:
        raise ValueError(f"Item {index}: duration must be positive")

    category = str(item.get("category") or "unknown").strip()
    if category not in EVENT_CATEGORIES:
        raise ValueError(f"Item {index}: invalid category '{category}'")

    meta = item.get("meta") or {}
    if not isinstance(meta, dict):
        raise ValueError(f"Item {index}: meta must be an object")

    location = item.get("location")
    return ScheduledEvent(
        id=str(item["id"]).strip(),
        title=str(item["title"]).strip(),
        start_minutes=start_minutes,
        duration=duration,
        category=category,
        description=str(item.get("description") or "").strip(),
        location=str(location).strip() if location else None,
        meta=dict(meta),
    )


def parse_events(payload: list) -> list[ScheduledEvent]:
    if not isinstance(payload, list):
        raise ValueError("JSON payload must be a list of objects")
    return [_parse_item(item, i) for i, item in enumerate(payload, start=1)]


def parse(file_path: str) -> list[ScheduledEvent]:
    """Parse JSON file into scheduled events."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    return parse_events(payload)


def _timestamp(item: dict, key: str, label: str) -> datetime:
    try:
        return datetime.fromisoformat(str(item[key]))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"{label}: malformed {key}") from exc


def _optional_float(item: dict, key: str, label: str):
    value = item.get(key)
    if value is None:
        return None
    try:
        return float(value)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"{label}: invalid {key}") from exc


def _section(payload: dict, name: str) -> list:
    items = payload.get(name) or []
    if not isinstance(items, list):
        raise ValueError(f"'{name}' must be a list")
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"{name} item {index}: expected an object")
    return items


def _parse_location_hour(item: dict, label: str) -> LocationHourlyRow:
    try:
        sample_count = int(item.get("sample_count", 0))
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"{label}: invalid sample_count") from exc
    return LocationHourlyRow(
        hour_start=_timestamp(item, "hour_start", label),
        sample_count=sample_count,
        place_id=item.get("place_id"),
        place_label=item.get("place_label"),
        place_category=item.get("place_category"),
        avg_accuracy_m=_optional_float(item, "avg_accuracy_m", label),
    )


def _parse_sample(item: dict, label: str) -> LocationSample:
    return LocationSample(
        recorded_at=_timestamp(item, "recorded_at", label),
        latitude=_optional_float(item, "latitude", label),
        longitude=_optional_float(item, "longitude", label),
    )


def _parse_screen_session(item: dict, label: str) -> ScreenTimeSessionRow:
    if not item.get("app_id"):
        raise ValueError(f"{label}: missing app_id")
    started_at = _timestamp(item, "started_at", label)
    ended_at = _timestamp(item, "ended_at", label)
    duration = _optional_float(item, "duration_seconds", label)
    return ScreenTimeSessionRow(
        id=str(item.get("id") or f"{item['app_id']}:{started_at.isoformat()}"),
        app_id=str(item["app_id"]),
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration if duration is not None else (ended_at - started_at).total_seconds(),
        display_name=item.get("display_name"),
        pickups=item.get("pickups"),
    )


def _parse_workout(item: dict, label: str) -> HealthWorkoutRow:
    started_at = _timestamp(item, "started_at", label)
    ended_at = _timestamp(item, "ended_at", label)
    duration = _optional_float(item, "duration_seconds", label)
    return HealthWorkoutRow(
        id=str(item.get("id") or started_at.isoformat()),
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration if duration is not None else (ended_at - started_at).total_seconds(),
        activity_type=item.get("activity_type"),
        total_energy_kcal=_optional_float(item, "total_energy_kcal", label),
        avg_heart_rate_bpm=_optional_float(item, "avg_heart_rate_bpm", label),
    )


def _parse_place(item: dict, label: str) -> UserPlace:
    if not item.get("id") or not item.get("label"):
        raise ValueError(f"{label}: places need an id and a label")
    return UserPlace(
        id=str(item["id"]),
        label=str(item["label"]),
        category=item.get("category"),
        latitude=_optional_float(item, "latitude", label),
        longitude=_optional_float(item, "longitude", label),
        radius_m=_optional_float(item, "radius_m", label),
    )


def _parse_daily(item, ymd_hint: str = "") -> HealthDailyRow | None:
    if item is None:
        return None
    if not isinstance(item, dict):
        raise ValueError("'health_daily' must be an object")
    label = "health_daily"
    return HealthDailyRow(
        local_date=str(item.get("local_date") or ymd_hint),
        sleep_asleep_seconds=_optional_float(item, "sleep_asleep_seconds", label),
        sleep_in_bed_seconds=_optional_float(item, "sleep_in_bed_seconds", label),
        hrv_sdnn_seconds=_optional_float(item, "hrv_sdnn_seconds", label),
        resting_heart_rate_avg_bpm=_optional_float(item, "resting_heart_rate_avg_bpm", label),
        heart_rate_avg_bpm=_optional_float(item, "heart_rate_avg_bpm", label),
        steps=item.get("steps"),
        workouts_count=item.get("workouts_count"),
    )


def parse_evidence_payload(payload: dict) -> EvidenceBundle:
    if not isinstance(payload, dict):
        raise ValueError("Evidence payload must be an object")

    def rows(name, parser):
        return [parser(item, f"{name} item {i}") for i, item in enumerate(_section(payload, name), start=1)]

    return EvidenceBundle(
        location_hourly=rows("location_hourly", _parse_location_hour),
        location_samples=rows("location_samples", _parse_sample),
        screen_time_sessions=rows("screen_time_sessions", _parse_screen_session),
        health_workouts=rows("health_workouts", _parse_workout),
        health_daily=_parse_daily(payload.get("health_daily"), str(payload.get("ymd") or "")),
        user_places=rows("user_places", _parse_place),
    )


def parse_evidence_bundle(file_path: str) -> EvidenceBundle:
    """Parse a JSON evidence file (one day, one user) into an evidence bundle."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    return parse_evidence_payload(payload)


def parse_history(file_path: str) -> list[PatternSourceEvent]:
    """Parse a JSON list of ``{"ymd": ..., "event": {...}}`` history entries."""

    with open(file_path, encoding="utf-8") as handle:
        payload = json.load(handle)

    if not isinstance(payload, list):
        raise ValueError("JSON payload must be a list of objects")

    entries = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict) or not item.get("ymd"):
            raise ValueError(f"Item {index}: missing ymd")
        entries.append(PatternSourceEvent(ymd=str(item["ymd"]), event=_parse_item(item.get("event"), index)))
    return entries
