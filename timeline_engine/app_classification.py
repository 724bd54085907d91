"""App usage classification and session intent labelling."""

from __future__ import annotations

from dataclasses import dataclass, field

OVERRIDE_CONFIDENCE_MIN = 0.6

CATEGORY_TITLES = {
    "routine": "Routine",
    "work": "Work",
    "meal": "Meal",
    "meeting": "Meeting",
    "health": "Health",
    "family": "Family",
    "social": "Social",
    "travel": "Travel",
    "finance": "Finance",
    "comm": "Commute",
    "digital": "Screen Time",
    "sleep": "Sleep",
    "unknown": "Unknown",
    "free": "Free",
}

DISTRACTION_APPS = [
    "instagram",
    "tiktok",
    "youtube",
    "twitter",
    "x",
    "facebook",
    "snapchat",
    "reddit",
    "netflix",
    "hulu",
    "disney+",
    "hbo",
    "candy crush",
    "clash",
    "wordle",
]

WORK_APPS = [
    "slack",
    "gmail",
    "outlook",
    "teams",
    "zoom",
    "notion",
    "figma",
    "linear",
    "jira",
    "asana",
    "trello",
    "google docs",
    "google sheets",
    "excel",
    "word",
    "powerpoint",
    "keynote",
    "numbers",
    "pages",
    "calendar",
    "meet",
]

PRODUCTIVE_APPS = ["calculator", "notes", "today matters", "todaymatters"]

TRAVEL_APPS = [
    "maps",
    "google maps",
    "waze",
    "uber",
    "lyft",
    "spotify",
    "podcasts",
    "audible",
    "apple music",
    "youtube music",
]

# App categories used for session intent, distinct from event categories.
APP_CATEGORIES = ("work", "social", "entertainment", "comms", "utility", "ignore")

DEFAULT_APP_CATEGORIES: dict[str, str] = {
    "slack": "work",
    "google docs": "work",
    "gmail": "work",
    "google meet": "work",
    "zoom": "work",
    "calendar": "work",
    "figma": "work",
    "notion": "work",
    "linear": "work",
    "vs code": "work",
    "visual studio code": "work",
    "xcode": "work",
    "teams": "work",
    "outlook": "work",
    "google sheets": "work",
    "excel": "work",
    "word": "work",
    "powerpoint": "work",
    "keynote": "work",
    "jira": "work",
    "asana": "work",
    "trello": "work",
    "confluence": "work",
    "github": "work",
    "gitlab": "work",
    "terminal": "work",
    "webex": "work",
    "miro": "work",
    "dropbox": "work",
    "google drive": "work",
    "obsidian": "work",
    "airtable": "work",
    "loom": "work",
    "instagram": "social",
    "tiktok": "social",
    "x": "social",
    "twitter": "social",
    "reddit": "social",
    "facebook": "social",
    "snapchat": "social",
    "linkedin": "social",
    "threads": "social",
    "bluesky": "social",
    "pinterest": "social",
    "discord": "social",
    "strava": "social",
    "youtube": "entertainment",
    "netflix": "entertainment",
    "spotify": "entertainment",
    "apple music": "entertainment",
    "twitch": "entertainment",
    "disney+": "entertainment",
    "podcasts": "entertainment",
    "hulu": "entertainment",
    "hbo max": "entertainment",
    "prime video": "entertainment",
    "audible": "entertainment",
    "kindle": "entertainment",
    "news": "entertainment",
    "candy crush": "entertainment",
    "clash royale": "entertainment",
    "wordle": "entertainment",
    "roblox": "entertainment",
    "minecraft": "entertainment",
    "messages": "comms",
    "imessage": "comms",
    "whatsapp": "comms",
    "telegram": "comms",
    "signal": "comms",
    "phone": "comms",
    "facetime": "comms",
    "messenger": "comms",
    "mail": "comms",
    "maps": "utility",
    "google maps": "utility",
    "waze": "utility",
    "photos": "utility",
    "weather": "utility",
    "calculator": "utility",
    "settings": "utility",
    "notes": "utility",
    "reminders": "utility",
    "wallet": "utility",
    "health": "utility",
    "clock": "utility",
    "safari": "utility",
    "chrome": "utility",
    "firefox": "utility",
    "uber": "utility",
    "lyft": "utility",
    "amazon": "utility",
    "springboard": "ignore",
    "siri": "ignore",
    "screen time": "ignore",
    "control center": "ignore",
    "today matters": "ignore",
    "todaymatters": "ignore",
}

# longest keys first so "google maps" wins over "maps"
_PARTIAL_KEYS = sorted((key for key in DEFAULT_APP_CATEGORIES if len(key) >= 3), key=len, reverse=True)

WORK_HIGH = 0.6
LEISURE_HIGH = 0.6
WORK_MEDIUM_MIN = 0.4
SOCIAL_DISTRACTION = 0.25


@dataclass
class AppCategoryOverride:
    """User-confirmed event category for an app."""

    category: str
    confidence: float


@dataclass
class AppClassification:
    title: str
    description: str
    category: str
    is_distraction: bool
    is_work: bool
    is_productive: bool
    confidence: float


@dataclass
class IntentClassification:
    intent: str
    breakdown: dict[str, float] = field(default_factory=dict)
    total_seconds: float = 0.0
    reasoning: str = ""


def normalize_app_key(value: str) -> str:
    return (value or "").strip().lower()


def app_matches_list(app_name: str, app_list: list[str]) -> bool:
    """Case-insensitive substring match; one or two letter entries must match exactly."""

    normalized = normalize_app_key(app_name)
    if not normalized:
        return False
    for entry in app_list:
        if entry == "*":
            return True
        candidate = entry.lower()
        if len(candidate) <= 2:
            if normalized == candidate:
                return True
        elif candidate in normalized:
            return True
    return False


def _override_classification(app_name: str, override: AppCategoryOverride) -> AppClassification:
    is_productive = override.category == "work"
    title = "Productive Screen Time" if is_productive else CATEGORY_TITLES.get(override.category, "Screen Time")
    return AppClassification(
        title=title,
        description=app_name,
        category=override.category,
        is_distraction=False,
        is_work=is_productive,
        is_productive=is_productive,
        confidence=override.confidence,
    )


def classify_app_usage(app_name: str, overrides: dict[str, AppCategoryOverride] | None = None) -> AppClassification:
    """Label one app with an event category, distraction flags and a confidence."""

    override = (overrides or {}).get(normalize_app_key(app_name))
    if override is not None and override.confidence >= OVERRIDE_CONFIDENCE_MIN:
        return _override_classification(app_name, override)

    if app_matches_list(app_name, DISTRACTION_APPS):
        return AppClassification("Doom Scroll", app_name, "digital", True, False, False, 0.75)

    if app_matches_list(app_name, WORK_APPS) or app_matches_list(app_name, PRODUCTIVE_APPS):
        return AppClassification("Productive Screen Time", app_name, "work", False, True, True, 0.7)

    return AppClassification("Screen Time", app_name, "digital", False, False, False, 0.55)


def get_app_category(app_id: str, overrides: dict[str, str] | None = None) -> str:
    """Resolve the intent category of an app, falling back to ``utility``."""

    key = normalize_app_key(app_id)
    if not key:
        return "utility"

    if overrides and key in overrides:
        return overrides[key]

    if key in DEFAULT_APP_CATEGORIES:
        return DEFAULT_APP_CATEGORIES[key]

    for candidate in _PARTIAL_KEYS:
        if candidate in key:
            return DEFAULT_APP_CATEGORIES[candidate]

    return "utility"


def classify_intent(summary: dict[str, float], overrides: dict[str, str] | None = None) -> IntentClassification:
    """Classify a session's intent from its per-app seconds.

    Rules, in order: work >= 60% is work, social + entertainment >= 60% is
    leisure, work in [40%, 60%) with social >= 25% is distracted work, no
    screen time at all is offline, anything else is mixed. Ignored apps do not
    count toward the total.
    """

    breakdown = {category: 0.0 for category in APP_CATEGORIES}
    for label, seconds in summary.items():
        breakdown[get_app_category(label, overrides)] += max(0.0, float(seconds))

    total = sum(seconds for category, seconds in breakdown.items() if category != "ignore")
    if total <= 0:
        return IntentClassification("offline", breakdown, 0.0, "No screen-time recorded")

    work = breakdown["work"] / total
    social = breakdown["social"] / total
    leisure = social + breakdown["entertainment"] / total

    if work >= WORK_HIGH:
        return IntentClassification("work", breakdown, total, f"Classified as Work: {round(work * 100)}% work apps")

    if leisure >= LEISURE_HIGH:
        return IntentClassification(
            "leisure", breakdown, total, f"Classified as Leisure: {round(leisure * 100)}% leisure apps"
        )

    if WORK_MEDIUM_MIN <= work < WORK_HIGH and social >= SOCIAL_DISTRACTION:
        return IntentClassification(
            "distracted_work",
            breakdown,
            total,
            f"Classified as Distracted Work: {round(work * 100)}% work with {round(social * 100)}% social media",
        )

    return IntentClassification(
        "mixed", breakdown, total, f"Classified as Mixed: {round(work * 100)}% work, {round(leisure * 100)}% leisure"
    )
