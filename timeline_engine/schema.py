"""Core data schema for evidence, sessions and timeline events."""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Union

EVENT_CATEGORIES = (
    "routine",
    "work",
    "meal",
    "meeting",
    "health",
    "family",
    "social",
    "travel",
    "finance",
    "comm",
    "digital",
    "sleep",
    "unknown",
    "free",
)

SESSION_INTENTS = ("work", "leisure", "distracted_work", "offline", "mixed")

VERIFICATION_STATUSES = ("verified", "partial", "unverified", "contradicted", "distracted")

MINUTES_PER_DAY = 24 * 60

_YMD_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


@dataclass
class ScheduledEvent:
    """Canonical planned or actual event, positioned in minutes from local midnight."""

    id: str
    title: str
    start_minutes: int
    duration: int
    category: str = "unknown"
    description: str = ""
    location: Optional[str] = None
    meta: dict = field(default_factory=dict)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration


@dataclass(frozen=True)
class RawEvidenceEvent:
    """A single timestamped observation from one collector."""

    id: str
    start: datetime
    end: datetime
    source: str
    title: str = ""
    place_id: Optional[str] = None
    place_label: Optional[str] = None
    app_id: Optional[str] = None
    is_commute: bool = False
    accuracy_m: Optional[float] = None
    sample_count: int = 0


@dataclass
class SessionBlock:
    """Contiguous span attributed to one place (or a commute) with an intent label."""

    source_id: str
    title: str
    start: datetime
    end: datetime
    place_id: Optional[str]
    place_label: Optional[str]
    intent: str
    confidence: float
    child_event_ids: list[str]
    summary: dict[str, float] = field(default_factory=dict)
    is_commute: bool = False
    reasoning: str = ""

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0


@dataclass(frozen=True)
class Absent:
    """Marker for an evidence source that has nothing to say about a window."""

    reason: str = "no data"


@dataclass
class LocationHourlyRow:
    hour_start: datetime
    sample_count: int
    place_id: Optional[str] = None
    place_label: Optional[str] = None
    place_category: Optional[str] = None
    avg_accuracy_m: Optional[float] = None


@dataclass
class LocationSample:
    recorded_at: datetime
    latitude: Optional[float]
    longitude: Optional[float]


@dataclass
class ScreenTimeSessionRow:
    id: str
    app_id: str
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    display_name: Optional[str] = None
    pickups: Optional[int] = None

    @property
    def app_name(self) -> str:
        return self.display_name or self.app_id


@dataclass
class HealthWorkoutRow:
    id: str
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    activity_type: Optional[str] = None
    total_energy_kcal: Optional[float] = None
    avg_heart_rate_bpm: Optional[float] = None


@dataclass
class HealthDailyRow:
    local_date: str
    sleep_asleep_seconds: Optional[float] = None
    sleep_in_bed_seconds: Optional[float] = None
    hrv_sdnn_seconds: Optional[float] = None
    resting_heart_rate_avg_bpm: Optional[float] = None
    heart_rate_avg_bpm: Optional[float] = None
    steps: Optional[int] = None
    workouts_count: Optional[int] = None


@dataclass
class UserPlace:
    id: str
    label: str
    category: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_m: Optional[float] = None


@dataclass
class EvidenceBundle:
    """Per-day collection of raw signals for one user. Every part may be empty."""

    location_hourly: list[LocationHourlyRow] = field(default_factory=list)
    location_samples: list[LocationSample] = field(default_factory=list)
    screen_time_sessions: list[ScreenTimeSessionRow] = field(default_factory=list)
    health_workouts: list[HealthWorkoutRow] = field(default_factory=list)
    health_daily: Union[HealthDailyRow, None] = None
    user_places: list[UserPlace] = field(default_factory=list)


def parse_ymd(ymd: str) -> date:
    """Parse a YYYY-MM-DD string, raising ValueError when malformed."""

    match = _YMD_PATTERN.match(ymd or "")
    if not match:
        raise ValueError(f"Invalid ymd '{ymd}', expected YYYY-MM-DD")
    return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def day_start(ymd: str, tz: Optional[tzinfo] = None) -> datetime:
    """Return local midnight of ``ymd`` as an aware datetime."""

    day = parse_ymd(ymd)
    return datetime(day.year, day.month, day.day, tzinfo=tz or timezone.utc)


def day_window(ymd: str, tz: Optional[tzinfo] = None) -> tuple[datetime, datetime]:
    start = day_start(ymd, tz)
    return start, start + timedelta(days=1)


def ensure_aware(value: datetime, tz: Optional[tzinfo] = None) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz or timezone.utc)
    return value


def minutes_since(start: datetime, value: datetime) -> float:
    """Minutes elapsed from ``start`` to ``value`` (negative before ``start``)."""

    return (ensure_aware(value, start.tzinfo) - start).total_seconds() / 60.0


def day_of_week(ymd: str) -> int:
    """Day of week for ``ymd`` with Sunday as 0."""

    return parse_ymd(ymd).isoweekday() % 7
