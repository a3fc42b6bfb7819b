"""
Field validators shared by the wizard and the parameter commands.

Every validator is pure: raw text in, ``ValidationResult`` out. Clearing
(``-`` or blank input on a clearable field) is decided by the callers
through ``is_clear_input`` so both entry points treat it the same way.
"""
import math
import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlparse

CLEAR_MARKER = "-"

DEFAULT_CATEGORY = "Regular/Mixed Ride"

CATEGORIES = [
    DEFAULT_CATEGORY,
    "Road Ride",
    "Gravel Ride",
    "Mountain/Enduro/Downhill Ride",
    "MTB-XC Ride",
    "E-Bike Ride",
    "Virtual/Indoor Ride",
]

DURATION_ERROR = (
    "❌ I couldn't understand that duration format. Please try something like:\n"
    "• 90 (for 90 minutes)\n"
    "• 2h (for 2 hours)\n"
    "• 2h 30m (for 2 hours and 30 minutes)\n"
    "• 1.5h (for 1 hour and 30 minutes)"
)
DISTANCE_ERROR = "Please enter a valid number for distance, or use a dash (-) to clear the field."
SPEED_ERROR = "Please enter the speed range in km/h like 25-28, 25 or -28, or use a dash (-) to clear the field."
ROUTE_ERROR = (
    "Invalid route URL format. Please provide a valid URL, use a dash (-) to clear the field, or click Skip."
)
TITLE_ERROR = "Title cannot be empty"


@dataclass
class ValidationResult:
    valid: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, value: Any) -> "ValidationResult":
        return cls(valid=True, value=value)

    @classmethod
    def fail(cls, error: str) -> "ValidationResult":
        return cls(valid=False, error=error)


def is_clear_input(text: Optional[str]) -> bool:
    """``-`` and blank input both mean "erase this value"."""
    return text is None or text.strip() in ("", CLEAR_MARKER)


def validate_title(text: str) -> ValidationResult:
    if is_clear_input(text):
        return ValidationResult.fail(TITLE_ERROR)
    return ValidationResult.ok(text.strip())


def validate_text(text: str) -> ValidationResult:
    return ValidationResult.ok(text.strip())


def normalize_category(text: Optional[str]) -> str:
    """Map free text onto a known category; anything unrecognized becomes the default."""
    if not text or not text.strip():
        return DEFAULT_CATEGORY

    needle = text.strip().lower()

    for category in CATEGORIES:
        if category.lower() == needle:
            return category

    for category in CATEGORIES:
        bare = re.sub(r"\s*ride$", "", category.lower())
        if needle == bare or needle in category.lower():
            return category

    for category in CATEGORIES:
        if needle in (part.strip() for part in category.lower().split("/")):
            return category

    return DEFAULT_CATEGORY


def validate_category(text: str) -> ValidationResult:
    return ValidationResult.ok(normalize_category(text))


def parse_duration(text: str) -> ValidationResult:
    """
    Parse a duration into whole minutes.

    Accepts a bare number of minutes ("90") or hour/minute parts
    ("2h", "2h 30m", "1.5h", "45m", "2 hours 15 minutes").
    """
    value = (text or "").strip().lower()
    if not value:
        return ValidationResult.fail(DURATION_ERROR)

    if re.fullmatch(r"\d+", value):
        return ValidationResult.ok(int(value))

    hours = re.search(r"(\d*\.?\d+)\s*h(?:ours?)?", value)
    minutes = re.search(r"(\d+)\s*m(?:in(?:utes?)?)?", value)
    if not hours and not minutes:
        return ValidationResult.fail(DURATION_ERROR)

    total = 0
    if hours:
        total += round(float(hours.group(1)) * 60)
    if minutes:
        total += int(minutes.group(1))
    return ValidationResult.ok(total)


def parse_distance(text: str) -> ValidationResult:
    match = re.match(r"^\s*(\d+(?:[.,]\d+)?)\s*(?:km)?\s*$", text or "", re.IGNORECASE)
    if not match:
        return ValidationResult.fail(DISTANCE_ERROR)
    distance = float(match.group(1).replace(",", "."))
    if distance <= 0 or math.isinf(distance):
        return ValidationResult.fail(DISTANCE_ERROR)
    return ValidationResult.ok(distance)


def parse_speed(text: str) -> ValidationResult:
    """
    Parse a speed range in km/h.

    "25-28" gives both bounds, "25" a minimum only and "-28" a maximum
    only. The value is ``{"speed_min": ..., "speed_max": ...}``.
    """
    match = re.match(
        r"^\s*(\d+(?:\.\d+)?)?\s*(?:(-)\s*(\d+(?:\.\d+)?)?)?\s*(?:km/?h)?\s*$",
        text or "",
        re.IGNORECASE,
    )
    if not match or (match.group(1) is None and match.group(3) is None):
        return ValidationResult.fail(SPEED_ERROR)

    speed_min = float(match.group(1)) if match.group(1) else None
    speed_max = float(match.group(3)) if match.group(3) else None
    if speed_min is not None and speed_max is not None and speed_min > speed_max:
        return ValidationResult.fail("Minimum speed can't be higher than maximum speed.")
    return ValidationResult.ok({"speed_min": speed_min, "speed_max": speed_max})


def is_valid_route_url(text: str) -> bool:
    parsed = urlparse((text or "").strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def validate_route_url(text: str) -> ValidationResult:
    if not is_valid_route_url(text):
        return ValidationResult.fail(ROUTE_ERROR)
    return ValidationResult.ok(text.strip())
