"""
MESSAGE FORMATTER TESTS

Rendering is deterministic, escapes user text and never exceeds the
message limit.
"""
from datetime import datetime, timezone

from ridebot.schemas.ride import ParticipantRecord, ParticipationRecord, RideRecord
from ridebot.services.message_formatter import (
    TRUNCATION_MARKER,
    MessageFormatter,
    format_duration,
    format_participant,
    format_speed_range,
    total_pages,
    truncate_html,
)

RIDE_DATE = datetime(2025, 7, 21, 14, 30, tzinfo=timezone.utc)


def make_record(**fields) -> RideRecord:
    data = {
        "id": "abc123XYZ00",
        "title": "Evening Ride",
        "category": "Road Ride",
        "date": RIDE_DATE,
        "created_by": 1,
    }
    data.update(fields)
    return RideRecord(**data)


def test_render_contains_details_and_marker():
    ride = make_record(
        organizer="Alex",
        meeting_point="Bike shop",
        route_link="https://www.strava.com/routes/1",
        distance=42.0,
        duration=125,
        speed_min=25,
        speed_max=28,
        additional_info="Lights!",
    )

    text = MessageFormatter().render(ride).text

    assert text.startswith("🚲 <b>Evening Ride</b>")
    assert "🚵 Category: Road Ride" in text
    assert "👤 Organizer: Alex" in text
    assert "📅 When: Mon, 21 Jul 2025 at 14:30" in text
    assert "📏 Distance: 42 km" in text
    assert "⏱ Duration: 2 h 5 min" in text
    assert "⚡ Speed: 25-28 km/h" in text
    assert "🚴 Joined (0): No one yet" in text
    assert text.rstrip().endswith("🎫 #Ride #abc123XYZ00")


def test_render_is_deterministic():
    ride = make_record()
    participation = ParticipationRecord(joined=[ParticipantRecord(user_id=5, first_name="Kim")])
    formatter = MessageFormatter()

    assert formatter.render(ride, participation) == formatter.render(ride, participation)


def test_user_text_is_escaped():
    text = MessageFormatter().render(make_record(title="<b>Fast</b> & Furious")).text
    assert "&lt;b&gt;Fast&lt;/b&gt; &amp; Furious" in text


def test_keyboard_has_participation_buttons():
    keyboard = MessageFormatter().keyboard(make_record())
    assert [b.callback_data for b in keyboard[0]] == [
        "join:abc123XYZ00",
        "thinking:abc123XYZ00",
        "pass:abc123XYZ00",
    ]


def test_cancelled_ride_has_badge_and_no_buttons():
    rendered = MessageFormatter().render(make_record(cancelled=True))
    assert "❌ CANCELLED" in rendered.text
    assert "This ride has been cancelled." in rendered.text
    assert rendered.keyboard == []


def test_share_hint_only_for_creator():
    formatter = MessageFormatter()
    ride = make_record()
    assert "/shareride" not in formatter.render(ride).text
    assert "<code>/shareride abc123XYZ00</code>" in formatter.render(ride, is_for_creator=True).text


def test_participant_formats():
    assert format_participant(ParticipantRecord(user_id=1, first_name="Ann", last_name="Lee", username="al")) == (
        '<a href="tg://user?id=1">Ann Lee (@al)</a>'
    )
    assert format_participant(ParticipantRecord(user_id=2, first_name="Bo")) == '<a href="tg://user?id=2">Bo</a>'
    assert format_participant(ParticipantRecord(user_id=3, username="cy")) == '<a href="tg://user?id=3">@cy</a>'


def test_long_rendering_is_truncated_with_closed_tags():
    many = [ParticipantRecord(user_id=i, first_name=f"Rider{i}") for i in range(400)]
    formatter = MessageFormatter(max_length=1000)

    text = formatter.render(make_record(), ParticipationRecord(joined=many)).text

    assert len(text) <= 1000
    assert text.endswith(TRUNCATION_MARKER)
    assert text.count("<a ") == text.count("</a>")


def test_truncate_html_closes_open_tags():
    text = "<b>" + "x" * 200 + "</b>"
    result = truncate_html(text, 100)
    assert len(result) <= 100
    assert "</b>" in result
    assert result.endswith(TRUNCATION_MARKER)


def test_duration_and_speed_formats():
    assert format_duration(45) == "45 min"
    assert format_duration(120) == "2 h"
    assert format_speed_range(25, None) == "25+ km/h"
    assert format_speed_range(None, 28) == "up to 28 km/h"


def test_rides_list_and_pages():
    formatter = MessageFormatter()
    text = formatter.render_rides_list([make_record(cancelled=True)], page=2, total_pages=3)
    assert "Evening Ride" in text
    assert "❌ CANCELLED" in text
    assert "Page 2/3" in text

    keyboard = formatter.rides_list_keyboard(2, 3)
    assert [b.callback_data for b in keyboard[0]] == ["list:1", "list:3"]
    assert formatter.rides_list_keyboard(1, 1) == []
    assert total_pages(0, 5) == 1
    assert total_pages(11, 5) == 3


def test_very_long_title_is_truncated_within_limit():
    formatter = MessageFormatter(max_length=1024)
    text = formatter.render(make_record(title="A" * 2000)).text
    assert len(text) <= 1024
    assert text.endswith(TRUNCATION_MARKER)
