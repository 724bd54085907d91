"""What evidence confirms or contradicts each event category."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from timeline_engine.app_classification import DISTRACTION_APPS, TRAVEL_APPS, WORK_APPS

EVIDENCE_TYPES = ("location", "screen_time", "health_workout", "health_sleep")

DEFAULT_EVIDENCE_WEIGHT = 0.5
DEFAULT_MAX_SCREEN_TIME_MINUTES = 30
DEFAULT_MAX_DISTRACTION_MINUTES = 30


@dataclass(frozen=True)
class VerificationRule:
    # None inside location_expected means any place is acceptable
    location_expected: tuple[Optional[str], ...] = (None,)
    location_required: bool = False
    allowed_apps: tuple[str, ...] = ()
    distraction_apps: tuple[str, ...] = ()
    max_screen_time_minutes: Optional[float] = None
    max_distraction_minutes: Optional[float] = None
    requires_screen_time: bool = False
    requires_workout: bool = False
    workout_contradicts_if_during: bool = False
    requires_location_change: bool = False
    verify_with: tuple[str, ...] = ()
    evidence_weights: dict[str, float] = field(default_factory=dict)

    def weight(self, evidence_type: str) -> float:
        return self.evidence_weights.get(evidence_type, DEFAULT_EVIDENCE_WEIGHT)

    def location_matches(self, place_category: Optional[str]) -> bool:
        if None in self.location_expected:
            return True
        return place_category is not None and place_category.lower() in self.location_expected

    def distraction_limit(self, override: Optional[float] = None) -> float:
        if override is not None:
            return override
        if self.max_distraction_minutes is not None:
            return self.max_distraction_minutes
        return DEFAULT_MAX_DISTRACTION_MINUTES


VERIFICATION_RULES: dict[str, VerificationRule] = {
    "sleep": VerificationRule(
        location_expected=("home",),
        location_required=True,
        max_screen_time_minutes=15,
        distraction_apps=("*",),
        workout_contradicts_if_during=True,
        verify_with=("location", "screen_time", "health_sleep"),
        evidence_weights={"location": 0.4, "screen_time": 0.3, "health_sleep": 0.3},
    ),
    "routine": VerificationRule(
        location_expected=("home",),
        max_screen_time_minutes=30,
        distraction_apps=tuple(DISTRACTION_APPS),
        max_distraction_minutes=15,
        verify_with=("location", "screen_time"),
    ),
    "work": VerificationRule(
        location_expected=("office", "home", "cafe"),
        allowed_apps=tuple(WORK_APPS),
        distraction_apps=tuple(DISTRACTION_APPS),
        max_distraction_minutes=20,
        verify_with=("location", "screen_time"),
        evidence_weights={"location": 0.6, "screen_time": 0.4},
    ),
    "meeting": VerificationRule(
        location_expected=("office", "cafe", "restaurant", None),
        allowed_apps=("zoom", "teams", "meet", "webex", "calendar", "notes"),
        distraction_apps=tuple(DISTRACTION_APPS),
        max_distraction_minutes=10,
        verify_with=("location", "screen_time"),
    ),
    "meal": VerificationRule(
        location_expected=("restaurant", "cafe", "home"),
        max_screen_time_minutes=20,
        distraction_apps=tuple(DISTRACTION_APPS),
        max_distraction_minutes=15,
        verify_with=("location", "screen_time"),
    ),
    "health": VerificationRule(
        location_expected=("gym", "home", None),
        requires_workout=True,
        allowed_apps=("strava", "nike", "peloton", "fitness", "health", "spotify", "podcasts"),
        verify_with=("location", "health_workout"),
        evidence_weights={"health_workout": 0.7, "location": 0.3},
    ),
    "family": VerificationRule(
        location_expected=("home", "restaurant", "cafe", None),
        distraction_apps=("*",),
        max_distraction_minutes=15,
        verify_with=("location", "screen_time"),
        evidence_weights={"screen_time": 0.7, "location": 0.3},
    ),
    "social": VerificationRule(
        location_expected=("restaurant", "cafe", None),
        distraction_apps=tuple(DISTRACTION_APPS),
        max_distraction_minutes=20,
        verify_with=("location", "screen_time"),
    ),
    "travel": VerificationRule(
        requires_location_change=True,
        allowed_apps=tuple(TRAVEL_APPS),
        verify_with=("location",),
    ),
    "finance": VerificationRule(
        location_expected=("home", "office", None),
        allowed_apps=("bank", "mint", "ynab", "personal capital", "venmo", "paypal"),
        verify_with=("screen_time",),
    ),
    "comm": VerificationRule(
        allowed_apps=("phone", "messages", "whatsapp", "telegram", "signal", "facetime"),
        requires_screen_time=True,
        verify_with=("screen_time",),
    ),
    "digital": VerificationRule(requires_screen_time=True, verify_with=("screen_time",)),
    "unknown": VerificationRule(),
    "free": VerificationRule(),
}


def get_verification_rule(category: str) -> VerificationRule:
    return VERIFICATION_RULES.get(category, VERIFICATION_RULES["unknown"])
