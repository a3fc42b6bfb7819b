"""
Parameter-block processing for the non-wizard commands.

Turns a ``{key: raw text}`` map (``title``, ``when``, ``dist`` ...) into
ride column values using the same validators as the wizard. ``-`` and
blank values clear a clearable field; on a required field they are a
validation error.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ridebot.core.exceptions import ValidationError
from ridebot.services import validators
from ridebot.services.date_parser import validate_date
from ridebot.services.route_parser import RouteParser, is_known_provider

logger = logging.getLogger(__name__)

VALID_PARAMS = {
    "title": "Title of the ride",
    "category": "Ride category",
    "organizer": "Ride organizer name",
    "when": "Date and time of the ride",
    "meet": "Meeting point",
    "route": "Route URL",
    "dist": "Distance in kilometers",
    "duration": "Duration (e.g. 90, 2h, 2h 30m)",
    "speed": "Speed range in km/h (e.g. 25-28)",
    "info": "Additional information",
    "id": "Ride ID (for commands that need it)",
}

# Plain text params and the column they fill
_TEXT_FIELDS = {
    "organizer": "organizer",
    "meet": "meeting_point",
    "info": "additional_info",
}


def _checked(result: validators.ValidationResult) -> Any:
    if not result.valid:
        raise ValidationError(result.error)
    return result.value


async def process_ride_fields(
    params: Dict[str, str],
    route_parser: Optional[RouteParser] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Validate every supplied param and return the column values to write.

    Raises ``ValidationError`` with the first failing field's message.
    Distance and duration scraped from a known route link are only used
    when ``dist``/``duration`` are not given explicitly.
    """
    data: Dict[str, Any] = {}

    if "title" in params:
        data["title"] = _checked(validators.validate_title(params["title"]))

    if "category" in params:
        raw = params["category"]
        data["category"] = (
            validators.DEFAULT_CATEGORY if validators.is_clear_input(raw) else validators.normalize_category(raw)
        )

    for key, column in _TEXT_FIELDS.items():
        if key in params:
            raw = params[key]
            data[column] = None if validators.is_clear_input(raw) else raw.strip()

    if "when" in params:
        data["date"] = _checked(validate_date(params["when"], now=now))

    if "dist" in params:
        raw = params["dist"]
        data["distance"] = None if validators.is_clear_input(raw) else _checked(validators.parse_distance(raw))

    if "duration" in params:
        raw = params["duration"]
        data["duration"] = None if validators.is_clear_input(raw) else _checked(validators.parse_duration(raw))

    if "speed" in params:
        raw = params["speed"]
        if validators.is_clear_input(raw):
            data["speed_min"] = data["speed_max"] = None
        else:
            data.update(_checked(validators.parse_speed(raw)))

    if "route" in params:
        raw = params["route"]
        if validators.is_clear_input(raw):
            data["route_link"] = None
        else:
            data["route_link"] = _checked(validators.validate_route_url(raw))
            if route_parser is not None and is_known_provider(data["route_link"]):
                info = await route_parser.parse_route(data["route_link"])
                if info:
                    if info.distance and "dist" not in params:
                        data["distance"] = info.distance
                    if info.duration and "duration" not in params:
                        data["duration"] = info.duration
                    logger.info(f"[FieldProcessor] Route info for {data['route_link']}: {info}")

    return data
