"""
Telegram helpers: ride-id resolution, parameter blocks and help text.
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

from ridebot.schemas.ride import ParticipantInfo
from ridebot.services.field_processor import VALID_PARAMS

logger = logging.getLogger(__name__)

_COMMAND_ARG = re.compile(r"^/(\w+)(?:@\w+)?(?:[ \t]+#?(\w+))?")
_ID_PARAM = re.compile(r"^\s*id\s*:\s*#?(\w+)\s*$", re.IGNORECASE | re.MULTILINE)
_RIDE_MARKER = re.compile(r"🎫\s*#Ride\s*#(\w+)")
_PARAM_LINE = re.compile(r"^\s*(\w+)\s*:\s*(.+)$")

RIDE_ID_MISSING = (
    "Please provide a ride ID after the command (e.g., /{command} abc123) "
    "or reply to a ride message."
)

HELP_TEXT = """<b>🚲 Bike Ride Bot Help</b>

<b>➕ Creating a New Ride</b>
1. Send <code>/newride</code> without parameters to start the step-by-step wizard.
2. Or send <code>/newride</code> followed by parameters, one per line:
<pre>
/newride
title: Evening Ride
category: Road Ride
when: tomorrow at 6pm
meet: Bike Shop on Main St
route: https://www.strava.com/routes/123456
dist: 35
duration: 90
speed: 25-28
info: Bring lights
</pre>

<b>🔄 Updating a Ride</b>
Only the ride creator can update. Reply to the ride message with <code>/updateride</code>,
or use <code>/updateride abc123</code>. Add parameters to change fields directly, or send
the command alone to use the wizard. Use a dash (-) to clear a field.

<b>❌ Cancelling and resuming</b>
<code>/cancelride abc123</code> and <code>/resumeride abc123</code>

<b>🗑 Deleting a Ride</b>
<code>/deleteride abc123</code> asks for confirmation first.

<b>🔄 Duplicating a Ride</b>
<code>/dupride abc123</code> copies a ride to the next day; add parameters to change fields.

<b>📋 Other commands</b>
<code>/listrides</code> lists the rides you created.
<code>/shareride abc123</code> posts a ride to the current chat.
<code>/listparticipants abc123</code> shows everyone who answered.
"""

START_TEXT = (
    "👋 <b>Welcome to the Bike Ride Bot!</b>\n\n"
    "I help you organize group rides: create a ride, share it in your chats "
    "and let people join with one tap.\n\n"
    "Send /newride to create your first ride or /help to see all commands."
)


def extract_ride_id(text: Optional[str], reply_text: Optional[str] = None) -> Optional[str]:
    """
    Find the ride a command refers to.

    Looks at the argument after the command word (``/cmd abc``,
    ``/cmd #abc``, ``/cmd@bot abc``), then an ``id:`` parameter line, then
    the ``🎫 #Ride #abc`` marker of the message being replied to.
    """
    text = text or ""
    match = _COMMAND_ARG.match(text)
    if match and match.group(2):
        return match.group(2)

    match = _ID_PARAM.search(text)
    if match:
        return match.group(1)

    if reply_text:
        match = _RIDE_MARKER.search(reply_text)
        if match:
            return match.group(1)
    return None


def command_name(text: Optional[str]) -> str:
    match = _COMMAND_ARG.match(text or "")
    return match.group(1).lower() if match else ""


def has_parameters(text: Optional[str]) -> bool:
    """True when anything but the command line itself was sent."""
    return any(line.strip() for line in (text or "").split("\n")[1:])


def parse_ride_params(text: Optional[str]) -> Tuple[Dict[str, str], List[str]]:
    """
    Parse ``key: value`` lines following the command line.

    Returns the recognized params (keys lower-cased) and the offending
    keys or lines that could not be used.
    """
    params: Dict[str, str] = {}
    unknown: List[str] = []
    for line in (text or "").split("\n")[1:]:
        if not line.strip():
            continue
        match = _PARAM_LINE.match(line)
        if not match:
            unknown.append(line.strip())
            continue
        key = match.group(1).strip().lower()
        if key in VALID_PARAMS:
            params[key] = match.group(2).strip()
        else:
            unknown.append(match.group(1).strip())
    return params, unknown


def unknown_params_message(unknown: List[str]) -> str:
    valid = "\n".join(f"{key}: {description}" for key, description in VALID_PARAMS.items())
    return f"Unknown parameter(s): {', '.join(unknown)}\n\nValid parameters are:\n{valid}"


def participant_from_user(user) -> ParticipantInfo:
    return ParticipantInfo(
        user_id=user.id,
        username=user.username or None,
        first_name=user.first_name or None,
        last_name=user.last_name or None,
    )
