"""Turn raw location samples into place segments using a radius test."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

import pygeohash as pgh

from timeline_engine.schema import LocationSample, UserPlace

GEOHASH_PRECISION = 12
DEFAULT_PLACE_RADIUS_M = 150
PLACE_MATCH_THRESHOLD = 0.7


@dataclass
class LocationSegment:
    source_id: str
    start: datetime
    end: datetime
    place_id: Optional[str]
    place_label: Optional[str]
    latitude: float
    longitude: float
    sample_count: int
    confidence: float


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points, via their geohashes."""

    return pgh.geohash_haversine_distance(
        pgh.encode(lat1, lon1, precision=GEOHASH_PRECISION),
        pgh.encode(lat2, lon2, precision=GEOHASH_PRECISION),
    )


def find_matching_place(latitude: float, longitude: float, places: list[UserPlace]) -> Optional[UserPlace]:
    """Nearest place whose radius contains the point."""

    best = None
    best_distance = math.inf
    for place in places:
        if place.latitude is None or place.longitude is None:
            continue
        distance = haversine_distance(latitude, longitude, place.latitude, place.longitude)
        radius = place.radius_m if place.radius_m is not None else DEFAULT_PLACE_RADIUS_M
        if distance <= radius and distance < best_distance:
            best = place
            best_distance = distance
    return best


def segment_confidence(sample_count: int, match_ratio: float) -> float:
    count_confidence = min(0.6, 0.3 + sample_count / 10 * 0.3)
    match_bonus = 0.0
    if match_ratio >= PLACE_MATCH_THRESHOLD:
        match_bonus = min(0.4, 0.1 + (match_ratio - PLACE_MATCH_THRESHOLD) / 0.3 * 0.3)
    return min(1.0, count_confidence + match_bonus)


def find_dominant_place(samples: list[LocationSample], places: list[UserPlace]):
    """Return (place, match_ratio); place is None unless 70% of samples agree on it."""

    if not samples:
        return None, 0.0

    counts: dict[Optional[str], int] = {None: 0}
    by_id: dict[Optional[str], Optional[UserPlace]] = {None: None}
    for sample in samples:
        match = None
        if sample.latitude is not None and sample.longitude is not None:
            match = find_matching_place(sample.latitude, sample.longitude, places)
        key = match.id if match else None
        counts[key] = counts.get(key, 0) + 1
        by_id[key] = match

    dominant_key = max(counts, key=lambda key: counts[key])
    ratio = counts[dominant_key] / len(samples)
    if ratio >= PLACE_MATCH_THRESHOLD:
        return by_id[dominant_key], ratio
    return None, ratio


def _centroid(samples: list[LocationSample]) -> tuple[float, float]:
    valid = [s for s in samples if s.latitude is not None and s.longitude is not None]
    if not valid:
        return 0.0, 0.0
    return (
        sum(s.latitude for s in valid) / len(valid),
        sum(s.longitude for s in valid) / len(valid),
    )


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def segment_source_id(window_start: datetime, place_id: Optional[str], segment_start: datetime) -> str:
    return f"location:{_epoch_ms(window_start)}:{place_id or 'unknown'}:{_epoch_ms(segment_start)}"


def generate_location_segments(
    samples: list[LocationSample],
    places: list[UserPlace],
    window_start: datetime,
    window_end: datetime,
) -> list[LocationSegment]:
    """Group consecutive samples by matched place and emit one segment per group."""

    valid = sorted(
        (s for s in samples if s.latitude is not None and s.longitude is not None),
        key=lambda s: s.recorded_at,
    )

    groups: list[list[LocationSample]] = []
    current_key = object()
    for sample in valid:
        match = find_matching_place(sample.latitude, sample.longitude, places)
        key = match.id if match else None
        if groups and key == current_key:
            groups[-1].append(sample)
        else:
            groups.append([sample])
            current_key = key

    segments = []
    for group in groups:
        place, ratio = find_dominant_place(group, places)
        start = max(group[0].recorded_at, window_start)
        end = min(group[-1].recorded_at, window_end)
        if start >= end:
            continue
        latitude, longitude = _centroid(group)
        place_id = place.id if place else None
        segments.append(
            LocationSegment(
                source_id=segment_source_id(window_start, place_id, start),
                start=start,
                end=end,
                place_id=place_id,
                place_label=place.label if place else None,
                latitude=latitude,
                longitude=longitude,
                sample_count=len(group),
                confidence=segment_confidence(len(group), ratio),
            )
        )
    return segments


def merge_adjacent_segments(segments: list[LocationSegment], max_gap_minutes: float = 5) -> list[LocationSegment]:
    """Join same-place segments separated by at most ``max_gap_minutes`` (GPS drift)."""

    if len(segments) <= 1:
        return list(segments)

    max_gap = timedelta(minutes=max_gap_minutes)
    merged = []
    current = segments[0]
    for segment in segments[1:]:
        if segment.place_id == current.place_id and segment.start - current.end <= max_gap:
            samples = current.sample_count + segment.sample_count
            current = replace(
                current,
                end=max(current.end, segment.end),
                sample_count=samples,
                confidence=segment_confidence(samples, 1.0),
            )
        else:
            merged.append(current)
            current = segment
    merged.append(current)
    return merged
