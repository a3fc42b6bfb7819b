"""
TELEGRAM HELPER TESTS: ride-id resolution and parameter blocks.
"""
from types import SimpleNamespace

from ridebot.telegram.utils import (
    extract_ride_id,
    has_parameters,
    parse_ride_params,
    participant_from_user,
    unknown_params_message,
)


def test_ride_id_from_command_argument():
    assert extract_ride_id("/cancelride abc123") == "abc123"
    assert extract_ride_id("/cancelride #abc123") == "abc123"
    assert extract_ride_id("/cancelride@RideBot abc123") == "abc123"


def test_ride_id_from_id_param():
    assert extract_ride_id("/updateride\nid: abc123\ntitle: New") == "abc123"


def test_ride_id_from_replied_message():
    reply = "🚲 <b>Evening Ride</b>\n\n🎫 #Ride #XyZ789"
    assert extract_ride_id("/updateride", reply) == "XyZ789"


def test_command_argument_wins():
    assert extract_ride_id("/shareride first\nid: second", "🎫 #Ride #third") == "first"


def test_no_ride_id():
    assert extract_ride_id("/cancelride", "just text") is None
    assert extract_ride_id("/updateride\ntitle: x") is None


def test_parse_params():
    params, unknown = parse_ride_params("/newride\ntitle: Evening Ride\nWhen: tomorrow 6pm\n\nroute: https://x.com/a:b")
    assert params == {"title": "Evening Ride", "when": "tomorrow 6pm", "route": "https://x.com/a:b"}
    assert unknown == []


def test_parse_params_reports_unknown():
    params, unknown = parse_ride_params("/newride\ntitle: Ride\ncolour: red\nno colon here")
    assert params == {"title": "Ride"}
    assert unknown == ["colour", "no colon here"]
    message = unknown_params_message(unknown)
    assert "colour" in message
    assert "title:" in message


def test_has_parameters():
    assert not has_parameters("/newride")
    assert not has_parameters("/newride\n  \n")
    assert has_parameters("/newride\ntitle: x")


def test_participant_from_user():
    user = SimpleNamespace(id=5, username="", first_name="Kim", last_name=None)
    info = participant_from_user(user)
    assert info.user_id == 5
    assert info.username is None
    assert info.first_name == "Kim"
