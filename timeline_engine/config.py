import os
from dataclasses import dataclass
from datetime import tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_STRICTNESS_LEVELS = ("default", "lenient", "strict")
_LOG_FORMATS = ("json", "text")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class Config:
    timezone: str = "UTC"
    micro_gap_minutes: float = 5.0
    short_session_minutes: float = 10.0
    min_segment_minutes: int = 1
    pattern_min_confidence: float = 0.6
    verification_strictness: str = "default"
    distraction_threshold_minutes: Optional[float] = None
    log_format: str = "json"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{self.timezone}'") from exc
        if self.verification_strictness not in _STRICTNESS_LEVELS:
            raise ValueError(f"Unknown verification strictness '{self.verification_strictness}'")
        if self.log_format not in _LOG_FORMATS:
            raise ValueError(f"Unknown log format '{self.log_format}'")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Unknown log level '{self.log_level}'")
        if not 0.0 <= self.pattern_min_confidence <= 1.0:
            raise ValueError("pattern_min_confidence must be within [0, 1]")
        if self.min_segment_minutes < 1:
            raise ValueError("min_segment_minutes must be at least 1")

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> "Config":
        distraction_raw = os.environ.get("TIMELINE_DISTRACTION_THRESHOLD_MINUTES")

        return cls(
            timezone=os.environ.get("TIMELINE_TIMEZONE", "UTC"),
            micro_gap_minutes=float(os.environ.get("TIMELINE_MICRO_GAP_MINUTES", "5")),
            short_session_minutes=float(os.environ.get("TIMELINE_SHORT_SESSION_MINUTES", "10")),
            min_segment_minutes=int(os.environ.get("TIMELINE_MIN_SEGMENT_MINUTES", "1")),
            pattern_min_confidence=float(os.environ.get("TIMELINE_PATTERN_MIN_CONFIDENCE", "0.6")),
            verification_strictness=os.environ.get("TIMELINE_VERIFICATION_STRICTNESS", "default"),
            distraction_threshold_minutes=float(distraction_raw) if distraction_raw else None,
            log_format=os.environ.get("TIMELINE_LOG_FORMAT", "json"),
            log_level=os.environ.get("TIMELINE_LOG_LEVEL", "INFO").upper(),
        )
