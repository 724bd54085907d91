from timeline_engine.app_classification import (
    DISTRACTION_APPS,
    AppCategoryOverride,
    app_matches_list,
    classify_app_usage,
    classify_intent,
    get_app_category,
)


def test_short_list_entries_match_exactly():
    assert app_matches_list("X", DISTRACTION_APPS)
    assert not app_matches_list("Xcode", DISTRACTION_APPS)
    assert app_matches_list("Instagram Reels", DISTRACTION_APPS)
    assert not app_matches_list("", DISTRACTION_APPS)
    assert app_matches_list("anything", ["*"])


def test_classify_app_usage_defaults():
    scroll = classify_app_usage("Instagram")
    assert (scroll.title, scroll.category, scroll.is_distraction, scroll.confidence) == ("Doom Scroll", "digital", True, 0.75)

    work = classify_app_usage("Slack")
    assert work.category == "work"
    assert work.is_productive

    other = classify_app_usage("Weather")
    assert (other.title, other.category, other.confidence) == ("Screen Time", "digital", 0.55)


def test_confident_override_wins_and_weak_one_is_ignored():
    strong = classify_app_usage("YouTube", {"youtube": AppCategoryOverride("work", 0.8)})
    assert strong.category == "work"
    assert not strong.is_distraction
    assert strong.confidence == 0.8

    weak = classify_app_usage("YouTube", {"youtube": AppCategoryOverride("work", 0.5)})
    assert weak.is_distraction

    meal = classify_app_usage("DoorDash", {"doordash": AppCategoryOverride("meal", 0.9)})
    assert meal.title == "Meal"


def test_get_app_category():
    assert get_app_category("Slack") == "work"
    assert get_app_category("Google Maps") == "utility"
    assert get_app_category("com.burbn.instagram") == "social"
    assert get_app_category("") == "utility"
    assert get_app_category("Some New App") == "utility"
    assert get_app_category("Maps", {"maps": "work"}) == "work"


def test_classify_intent_rules():
    assert classify_intent({"Slack": 3600}).intent == "work"
    assert classify_intent({"Instagram": 2000, "YouTube": 1000, "Slack": 500}).intent == "leisure"
    assert classify_intent({"Slack": 500, "Instagram": 300, "Maps": 200}).intent == "distracted_work"
    assert classify_intent({"Slack": 400, "Maps": 600}).intent == "mixed"
    assert classify_intent({}).intent == "offline"


def test_ignored_apps_do_not_count():
    intent = classify_intent({"SpringBoard": 1000, "Slack": 100})
    assert intent.intent == "work"
    assert intent.total_seconds == 100
    assert intent.breakdown["ignore"] == 1000


def test_intent_reasoning_mentions_share():
    intent = classify_intent({"Slack": 900, "Notion": 100})
    assert intent.reasoning == "Classified as Work: 100% work apps"
