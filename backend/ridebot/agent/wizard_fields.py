"""
Wizard step graph.

title → category → organizer → date → route → distance → duration →
speed → meet → info → confirm

Each step knows its validator, which ride columns it fills and whether
it is required, clearable (``-`` erases it) or skippable. The only branch
is after ``route``: a recognized provider link whose page gave distance
and/or duration jumps past the steps it already answered.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ridebot.services import validators
from ridebot.services.date_parser import format_datetime, validate_date
from ridebot.services.message_formatter import format_duration, format_number, format_speed_range
from ridebot.services.route_parser import is_known_provider

CONFIRM_STEP = "confirm"

CLEAR_HINT = "\n<i>Enter a dash (-) to clear/skip this field</i>"


class FieldType(str, Enum):
    TEXT = "text"
    CATEGORY = "category"
    DATE = "date"
    ROUTE = "route"
    NUMBER = "number"
    DURATION = "duration"
    SPEED = "speed"


@dataclass(frozen=True)
class WizardField:
    step: str
    type: FieldType
    data_keys: Tuple[str, ...]
    prompt: str
    label: str
    validator: Callable[[str], validators.ValidationResult]
    required: bool = False
    clearable: bool = False
    skippable: bool = False
    next_step: Optional[str] = None
    previous_step: Optional[str] = None


WIZARD_FIELDS: Dict[str, WizardField] = {
    field.step: field
    for field in (
        WizardField(
            step="title", type=FieldType.TEXT, data_keys=("title",),
            prompt="📝 Please enter the ride title:", label="📝 Title",
            validator=validators.validate_title,
            required=True, next_step="category",
        ),
        WizardField(
            step="category", type=FieldType.CATEGORY, data_keys=("category",),
            prompt="🚲 Please select the ride category:", label="🚲 Category",
            validator=validators.validate_category,
            skippable=True, next_step="organizer", previous_step="title",
        ),
        WizardField(
            step="organizer", type=FieldType.TEXT, data_keys=("organizer",),
            prompt="👤 Who is organizing this ride?" + CLEAR_HINT, label="👤 Organizer",
            validator=validators.validate_text,
            clearable=True, skippable=True, next_step="date", previous_step="category",
        ),
        WizardField(
            step="date", type=FieldType.DATE, data_keys=("date",),
            prompt=(
                "📅 When is the ride?\nYou can use natural language like:\n"
                "• tomorrow at 6pm\n• in 2 hours\n• next saturday 10am\n• 21 Jul 14:30"
            ),
            label="📅 When",
            validator=validate_date,
            required=True, next_step="route", previous_step="organizer",
        ),
        WizardField(
            step="route", type=FieldType.ROUTE, data_keys=("route_link",),
            prompt="🔗 Please enter the route link (or skip):" + CLEAR_HINT, label="🔗 Route",
            validator=validators.validate_route_url,
            clearable=True, skippable=True, next_step="distance", previous_step="date",
        ),
        WizardField(
            step="distance", type=FieldType.NUMBER, data_keys=("distance",),
            prompt="📏 Please enter the distance in kilometers (or skip):" + CLEAR_HINT, label="📏 Distance",
            validator=validators.parse_distance,
            clearable=True, skippable=True, next_step="duration", previous_step="route",
        ),
        WizardField(
            step="duration", type=FieldType.DURATION, data_keys=("duration",),
            prompt='⏱ Please enter the duration (e.g., "2h 30m", "90m", "1.5h"):' + CLEAR_HINT,
            label="⏱ Duration",
            validator=validators.parse_duration,
            clearable=True, skippable=True, next_step="speed", previous_step="distance",
        ),
        WizardField(
            step="speed", type=FieldType.SPEED, data_keys=("speed_min", "speed_max"),
            prompt="🚴 Please enter the speed range in km/h (e.g., 25-28) or skip:" + CLEAR_HINT, label="🚴 Speed",
            validator=validators.parse_speed,
            clearable=True, skippable=True, next_step="meet", previous_step="duration",
        ),
        WizardField(
            step="meet", type=FieldType.TEXT, data_keys=("meeting_point",),
            prompt="📍 Please enter the meeting point (or skip):" + CLEAR_HINT, label="📍 Meeting Point",
            validator=validators.validate_text,
            clearable=True, skippable=True, next_step="info", previous_step="speed",
        ),
        WizardField(
            step="info", type=FieldType.TEXT, data_keys=("additional_info",),
            prompt="ℹ️ Please enter any additional information (or skip):" + CLEAR_HINT,
            label="ℹ️ Additional Info",
            validator=validators.validate_text,
            clearable=True, skippable=True, next_step=CONFIRM_STEP, previous_step="meet",
        ),
    )
}

FIRST_STEP = "title"
LAST_FIELD_STEP = "info"

# Always listed on the confirmation screen
SUMMARY_REQUIRED = ("title", "category", "date")


def previous_step(step: str) -> Optional[str]:
    if step == CONFIRM_STEP:
        return LAST_FIELD_STEP
    return WIZARD_FIELDS[step].previous_step


def compute_next_step(step: str, data: Dict[str, Any]) -> str:
    """Step that follows ``step`` once its value has been entered."""
    field = WIZARD_FIELDS[step]
    if field.type is FieldType.ROUTE and data.get("route_link") and is_known_provider(data["route_link"]):
        if data.get("distance") and data.get("duration"):
            return "speed"
        if data.get("distance"):
            return "duration"
    return field.next_step


def has_value(field: WizardField, data: Dict[str, Any]) -> bool:
    return any(data.get(key) not in (None, "") for key in field.data_keys)


def _format_text(field: WizardField, data: Dict[str, Any]) -> str:
    return str(data[field.data_keys[0]])


def _format_date(field: WizardField, data: Dict[str, Any]) -> str:
    return format_datetime(data["date"])


def _format_number(field: WizardField, data: Dict[str, Any]) -> str:
    return f"{format_number(data['distance'])} km"


def _format_duration(field: WizardField, data: Dict[str, Any]) -> str:
    return format_duration(data["duration"])


def _format_speed(field: WizardField, data: Dict[str, Any]) -> str:
    return format_speed_range(data.get("speed_min"), data.get("speed_max"))


VALUE_FORMATTERS: Dict[FieldType, Callable[[WizardField, Dict[str, Any]], str]] = {
    FieldType.TEXT: _format_text,
    FieldType.CATEGORY: _format_text,
    FieldType.ROUTE: _format_text,
    FieldType.DATE: _format_date,
    FieldType.NUMBER: _format_number,
    FieldType.DURATION: _format_duration,
    FieldType.SPEED: _format_speed,
}


def format_value(field: WizardField, data: Dict[str, Any]) -> Optional[str]:
    """Display string for the field's current value, ``None`` when unset."""
    if not has_value(field, data):
        return None
    return VALUE_FORMATTERS[field.type](field, data)
