"""
Ride rendering (Telegram HTML).

``render`` is pure: the same ride and participation always give the same
text and keyboard. Output never exceeds ``MAX_MESSAGE_LENGTH``; longer
renderings are cut, unclosed tags are closed and a marker is appended.
"""
import math
import re
from dataclasses import dataclass, field
from html import escape
from typing import List, Optional

from ridebot.core.config import settings
from ridebot.schemas.ride import ParticipantRecord, ParticipationRecord, RideRecord
from ridebot.services.date_parser import format_datetime

TRUNCATION_MARKER = "(message truncated due to length)"
CANCELLED_BADGE = "❌ CANCELLED"
CANCELLED_MESSAGE = "This ride has been cancelled."
NO_ONE_YET = "No one yet"

BUTTONS = {
    "join": "I'm in! 🚴",
    "thinking": "Maybe 🤔",
    "pass": "Pass 🙅",
    "confirm_delete": "Yes, delete ❌",
    "cancel_delete": "No, keep it ✅",
    "back": "⬅️ Back",
    "skip": "⏩ Skip",
    "cancel": "❌ Cancel",
    "create": "✅ Create",
    "update": "✅ Update",
    "keep": "↩️ Keep current",
    "previous": "◀️ Previous",
    "next": "Next ▶️",
}

_TAG = re.compile(r"<(/?)([a-zA-Z]+)[^>]*>")


@dataclass(frozen=True)
class Button:
    label: str
    callback_data: str


@dataclass
class RenderedMessage:
    text: str
    keyboard: List[List[Button]] = field(default_factory=list)


def format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def format_duration(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes} min"
    hours, rest = divmod(minutes, 60)
    return f"{hours} h" if rest == 0 else f"{hours} h {rest} min"


def format_speed_range(speed_min: Optional[float], speed_max: Optional[float]) -> str:
    if speed_min and speed_max:
        return f"{format_number(speed_min)}-{format_number(speed_max)} km/h"
    if speed_min:
        return f"{format_number(speed_min)}+ km/h"
    if speed_max:
        return f"up to {format_number(speed_max)} km/h"
    return ""


def format_participant(participant: ParticipantRecord) -> str:
    full_name = " ".join(p for p in (participant.first_name, participant.last_name) if p).strip()
    if full_name and participant.username:
        label = f"{full_name} (@{participant.username})"
    elif full_name:
        label = full_name
    elif participant.username:
        label = f"@{participant.username}"
    else:
        label = f"User {participant.user_id}"
    return f'<a href="tg://user?id={participant.user_id}">{escape(label)}</a>'


def _participant_list(participants: List[ParticipantRecord]) -> str:
    if not participants:
        return NO_ONE_YET
    return ", ".join(format_participant(p) for p in participants)


def _ride_details(ride: RideRecord) -> str:
    lines = [f"🚵 Category: {escape(ride.category)}"]
    if ride.organizer:
        lines.append(f"👤 Organizer: {escape(ride.organizer)}")
    lines.append(f"📅 When: {format_datetime(ride.date)}")
    if ride.meeting_point:
        lines.append(f"📍 Meeting point: {escape(ride.meeting_point)}")
    if ride.route_link:
        lines.append(f'🔗 Route: <a href="{escape(ride.route_link)}">Link</a>')
    if ride.distance:
        lines.append(f"📏 Distance: {format_number(ride.distance)} km")
    if ride.duration:
        lines.append(f"⏱ Duration: {format_duration(ride.duration)}")
    if ride.speed_min or ride.speed_max:
        lines.append(f"⚡ Speed: {format_speed_range(ride.speed_min, ride.speed_max)}")
    if ride.additional_info:
        lines.append(f"ℹ️ Additional info: {escape(ride.additional_info)}")
    return "\n".join(lines) + "\n"


def _open_tags(html: str) -> List[str]:
    stack: List[str] = []
    for match in _TAG.finditer(html):
        closing, name = match.group(1), match.group(2).lower()
        if not closing:
            stack.append(name)
        elif name in stack:
            # Drop the innermost matching tag
            del stack[len(stack) - 1 - stack[::-1].index(name)]
    return stack


def truncate_html(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut ``text`` to at most ``limit`` characters, keeping the HTML well-formed."""
    if len(text) <= limit:
        return text

    suffix = f"\n\n{marker}"
    cut = limit - len(suffix)
    while cut > 0:
        head = text[:cut]
        head = re.sub(r"<[^>]*$", "", head)  # half a tag
        head = re.sub(r"&[#\w]*$", "", head)  # half an entity
        closing = "".join(f"</{name}>" for name in reversed(_open_tags(head)))
        result = head + closing + suffix
        if len(result) <= limit:
            return result
        cut -= len(result) - limit
    return marker[:limit]


class MessageFormatter:
    def __init__(self, max_length: int = None):
        self.max_length = max_length or settings.MAX_MESSAGE_LENGTH

    def keyboard(self, ride: RideRecord) -> List[List[Button]]:
        if ride.cancelled:
            return []
        return [[
            Button(BUTTONS["join"], f"join:{ride.id}"),
            Button(BUTTONS["thinking"], f"thinking:{ride.id}"),
            Button(BUTTONS["pass"], f"pass:{ride.id}"),
        ]]

    def render(
        self,
        ride: RideRecord,
        participation: Optional[ParticipationRecord] = None,
        is_for_creator: bool = False,
    ) -> RenderedMessage:
        participation = participation or ride.participation

        text = (
            f"🚲 <b>{escape(ride.title)}</b>{' ' + CANCELLED_BADGE if ride.cancelled else ''}\n"
            f"\n"
            f"{_ride_details(ride)}"
            f"\n"
            f"🚴 Joined ({len(participation.joined)}): {_participant_list(participation.joined)}\n"
            f"🤔 Thinking ({len(participation.thinking)}): {_participant_list(participation.thinking)}\n"
            f"🙅 Not interested: {len(participation.skipped)}\n"
            f"\n"
            f"🎫 #Ride #{ride.id}"
        )
        if ride.cancelled:
            text += f"\n\n{CANCELLED_MESSAGE}"
        if is_for_creator:
            text += f"\n\n💡 Share this ride in other chats with <code>/shareride {ride.id}</code>"

        return RenderedMessage(text=truncate_html(text, self.max_length), keyboard=self.keyboard(ride))

    def render_rides_list(self, rides: List[RideRecord], page: int, total_pages: int) -> str:
        if not rides:
            return "You have not created any rides yet."

        lines = ["🚲 <b>Your Rides</b>", ""]
        for ride in rides:
            status = f" {CANCELLED_BADGE}" if ride.cancelled else ""
            lines.append(f"<b>{escape(ride.title)}</b>{status}")
            lines.append(f"📅 {format_datetime(ride.date)}")
            lines.append(f"🎫 #Ride #{ride.id}")
            lines.append("")
        lines.append(f"Page {page}/{total_pages}")
        return truncate_html("\n".join(lines), self.max_length)

    def rides_list_keyboard(self, page: int, total_pages: int) -> List[List[Button]]:
        row = []
        if page > 1:
            row.append(Button(BUTTONS["previous"], f"list:{page - 1}"))
        if page < total_pages:
            row.append(Button(BUTTONS["next"], f"list:{page + 1}"))
        return [row] if row else []


def total_pages(total: int, page_size: int) -> int:
    return max(1, math.ceil(total / page_size))
