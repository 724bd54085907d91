"""CSV adapter for planned and actual timeline events."""

from __future__ import annotations

import csv
import json

from timeline_engine.schema import EVENT_CATEGORIES, MINUTES_PER_DAY, ScheduledEvent

_REQUIRED_FIELDS = {"id", "title", "start_minutes", "duration"}


def _parse_row(row: dict, row_number: int) -> ScheduledEvent:
    missing = sorted(field for field in _REQUIRED_FIELDS if not (row.get(field) or "").strip())
    if missing:
        raise ValueError(f"Row {row_number}: missing required fields {missing}")

    try:
        start_minutes = int(row["start_minutes"])
        duration = int(row["duration"])
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Row {row_number}: start_minutes and duration must be integers") from exc

    if not 0 <= start_minutes < MINUTES_PER_DAY:
        raise ValueError(f"Row {row_number}: start_minutes {start_minutes} outside the day")
    if duration <= 0:
        raise ValueError(f"Row {row_number}: duration must be positive")

    category = (row.get("category") or "unknown").strip()
    if category not in EVENT_CATEGORIES:
        raise ValueError(f"Row {row_number}: invalid category '{category}'")

    meta_raw = row.get("meta")
    meta = {}
    if meta_raw not in (None, ""):
        try:
            meta = json.loads(meta_raw)
        except Exception as exc:  # noqa: BLE001
            raise ValueError(f"Row {row_number}: meta is not valid JSON") from exc
        if not isinstance(meta, dict):
            raise ValueError(f"Row {row_number}: meta must be a JSON object")

    location = (row.get("location") or "").strip() or None
    return ScheduledEvent(
        id=row["id"].strip(),
        title=row["title"].strip(),
        start_minutes=start_minutes,
        duration=duration,
        category=category,
        description=(row.get("description") or "").strip(),
        location=location,
        meta=meta,
    )


def parse(file_path: str) -> list[ScheduledEvent]:
    """Parse CSV file into a list of scheduled events."""

    with open(file_path, newline="", encoding="utf-8") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            return []

        events: list[ScheduledEvent] = []
        for row_number, row in enumerate(reader, start=2):
            events.append(_parse_row(row, row_number))
        return events
