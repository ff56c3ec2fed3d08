"""App and place classification.

Maps an app name (or package id) and a place label/category to a timeline
category with a confidence. Both classifiers are pure and total: they never
raise and always return a value, because they run inline inside larger
derivations.

Matching is a case-insensitive substring test on the normalized name, so
``"com.instagram.android"`` and ``"Instagram"`` both match ``instagram``.

Example:
    >>> classify_app_usage("Instagram").title
    'Doom Scroll'
    >>> classify_place("Blue Bottle Coffee")
    <EventCategory.MEAL: 'meal'>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from daytrace.core.evidence import AppCategoryOverride
from daytrace.core.models import EventCategory

# =============================================================================
# Curated Lists
# =============================================================================

DISTRACTION_APPS = (
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
)

WORK_APPS = (
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
)

PRODUCTIVE_APPS = ("calculator", "notes", "today matters", "todaymatters", "mobile")

HEALTH_APPS = ("strava", "nike", "peloton", "fitness", "health", "garmin", "fitbit")

TRAVEL_APPS = ("maps", "waze", "uber", "lyft", "transit", "citymapper")

# Apps that are expected (not a distraction) for a planned activity.
EXPECTED_APPS: dict[EventCategory, tuple[str, ...]] = {
    EventCategory.WORK: WORK_APPS + PRODUCTIVE_APPS,
    EventCategory.MEETING: ("zoom", "teams", "meet", "slack", "webex", "calendar"),
    EventCategory.HEALTH: HEALTH_APPS + ("spotify", "apple music"),
    EventCategory.TRAVEL: TRAVEL_APPS,
    EventCategory.COMM: TRAVEL_APPS + ("spotify", "podcasts", "audible"),
    EventCategory.SOCIAL: ("messages", "whatsapp", "instagram", "snapchat", "facebook"),
    EventCategory.DIGITAL: ("*",),
    EventCategory.FREE: ("*",),
}

PLACE_KEYWORDS: tuple[tuple[EventCategory, tuple[str, ...]], ...] = (
    (EventCategory.MEAL, ("coffee", "cafe", "restaurant", "diner", "food", "bar")),
    (EventCategory.HEALTH, ("gym", "fitness", "workout", "yoga", "park")),
    (EventCategory.WORK, ("office", "work", "cowork", "studio", "school", "university")),
    (EventCategory.ROUTINE, ("church", "chapel", "temple")),
    (EventCategory.FAMILY, ("home",)),
    (EventCategory.FINANCE, ("bank", "finance")),
    (EventCategory.TRAVEL, ("airport", "station", "transit", "travel")),
)

_WORD_RE = re.compile(r"[a-z0-9+]+")


# =============================================================================
# App Classification
# =============================================================================


@dataclass(frozen=True)
class AppClassification:
    """Result of classifying an app.

    Attributes:
        title: Block title for screen-time built from this app.
        description: Usually the app name.
        category: Timeline category.
        confidence: Confidence in the category.
        is_distraction: App is on the distraction list.
        is_productive: App is on a work or productivity list.
    """

    title: str
    description: str
    category: EventCategory
    confidence: float
    is_distraction: bool = False
    is_productive: bool = False


def normalize_app_key(app: str | None) -> str:
    """Lowercase, trimmed app key used for override lookups."""
    return (app or "").strip().lower()


def _matches(name: str, keywords: tuple[str, ...]) -> bool:
    # Single-letter keywords ("x") only match a whole word.
    words = set(_WORD_RE.findall(name))
    for keyword in keywords:
        if keyword == "*":
            return True
        if len(keyword) == 1:
            if keyword in words:
                return True
        elif keyword in name:
            return True
    return False


def is_distraction_app(app: str | None) -> bool:
    return _matches(normalize_app_key(app), DISTRACTION_APPS)


def is_productive_app(app: str | None) -> bool:
    name = normalize_app_key(app)
    return _matches(name, WORK_APPS) or _matches(name, PRODUCTIVE_APPS)


def is_expected_app(app: str | None, category: EventCategory) -> bool:
    """Whether an app is normal to use during an activity of ``category``."""
    allowed = EXPECTED_APPS.get(category)
    if not allowed:
        return False
    return _matches(normalize_app_key(app), allowed)


def _find_override(
    app: str, overrides: Mapping[str, AppCategoryOverride] | None
) -> AppCategoryOverride | None:
    if not overrides:
        return None
    key = normalize_app_key(app)
    for override_key, override in overrides.items():
        if normalize_app_key(override_key) == key:
            return override
    return None


def classify_app_usage(
    app: str | None,
    overrides: Mapping[str, AppCategoryOverride] | None = None,
) -> AppClassification:
    """Classify an app into a timeline category.

    A user override for the app wins outright with its stored confidence.
    Otherwise the curated lists are consulted in order: distraction,
    work/productivity, health/fitness. Anything else is neutral screen time.

    Args:
        app: Display name or package identifier. ``None`` and blank names
            classify as neutral screen time.
        overrides: Optional ``app_key -> override`` map.

    Returns:
        The classification. Never raises.
    """
    name = (app or "").strip()
    label = name or "Screen Time"
    key = normalize_app_key(name)
    distraction = _matches(key, DISTRACTION_APPS) if key else False
    productive = (_matches(key, WORK_APPS) or _matches(key, PRODUCTIVE_APPS)) if key else False

    override = _find_override(name, overrides) if key else None
    if override is not None:
        title = (
            "Productive Screen Time"
            if override.category == EventCategory.WORK
            else override.category.display_title
        )
        return AppClassification(
            title=title,
            description=label,
            category=override.category,
            confidence=override.confidence,
            is_distraction=override.category == EventCategory.DIGITAL and distraction,
            is_productive=override.category == EventCategory.WORK,
        )

    if distraction:
        return AppClassification(
            title="Doom Scroll",
            description=label,
            category=EventCategory.DIGITAL,
            confidence=0.75,
            is_distraction=True,
        )

    if productive:
        return AppClassification(
            title="Productive Screen Time",
            description=label,
            category=EventCategory.WORK,
            confidence=0.7,
            is_productive=True,
        )

    if key and _matches(key, HEALTH_APPS):
        return AppClassification(
            title="Workout Tracking",
            description=label,
            category=EventCategory.HEALTH,
            confidence=0.65,
        )

    return AppClassification(
        title="Screen Time",
        description=label,
        category=EventCategory.DIGITAL,
        confidence=0.45,
    )


# =============================================================================
# Place Classification
# =============================================================================


def classify_place(label: str | None, place_category: str | None = None) -> EventCategory:
    """Map a place label and/or category to a timeline category.

    A ``place_category`` that is itself a timeline category value (for
    example ``"work"``) is used directly. Otherwise the combined text is
    matched against keyword groups; unmatched places are ``free``.
    """
    if place_category:
        try:
            direct = EventCategory(place_category.strip().lower())
        except ValueError:
            direct = None
        if direct is not None and direct not in (EventCategory.UNKNOWN, EventCategory.FREE):
            return direct

    combined = f"{label or ''} {place_category or ''}".lower()
    for category, keywords in PLACE_KEYWORDS:
        if any(keyword in combined for keyword in keywords):
            return category
    return EventCategory.FREE


def format_place_label(value: str | None) -> str:
    """Title-case a raw place label (``"blue_bottle-coffee"`` -> ``"Blue Bottle Coffee"``)."""
    cleaned = re.sub(r"[_-]+", " ", value or "").strip()
    if not cleaned:
        return "Location"
    return " ".join(word[0].upper() + word[1:] for word in cleaned.split())
