"""
RIDE REPOSITORY TESTS

CRUD, message-handle bookkeeping, creator checks and the
parameter-based create / update / duplicate entry points.
"""
from datetime import timedelta

import pytest

from conftest import NOW
from ridebot.core.exceptions import PermissionDeniedError, RideNotFoundError, ValidationError
from ridebot.schemas.ride import MessageHandle
from ridebot.services.ride_repository import BASE62_ALPHABET, RIDE_ID_LENGTH, generate_ride_id
from ridebot.services.route_parser import RouteInfo
from ridebot.services.validators import DEFAULT_CATEGORY


def test_generated_ids_are_base62_and_fixed_length():
    ids = {generate_ride_id() for _ in range(200)}
    assert len(ids) == 200
    for ride_id in ids:
        assert len(ride_id) == RIDE_ID_LENGTH
        assert set(ride_id) <= set(BASE62_ALPHABET)


def test_create_and_get(repository):
    ride = repository.create({"title": "Morning Loop", "date": NOW + timedelta(days=1)}, created_by=7)

    fetched = repository.get(ride.id)
    assert fetched.title == "Morning Loop"
    assert fetched.category == DEFAULT_CATEGORY
    assert fetched.created_by == 7
    assert fetched.cancelled is False
    assert fetched.messages == []
    assert fetched.date == NOW + timedelta(days=1)


def test_create_requires_title_and_date(repository):
    with pytest.raises(ValidationError):
        repository.create({"title": "", "date": NOW}, created_by=1)
    with pytest.raises(ValidationError):
        repository.create({"title": "No date"}, created_by=1)


def test_get_unknown_ride_raises(repository):
    with pytest.raises(RideNotFoundError) as exc:
        repository.get("missing")
    assert "missing" in exc.value.message


def test_update_changes_only_given_fields(repository, make_ride):
    ride = make_ride(meeting_point="Cafe")

    updated = repository.update(ride.id, {"title": "New title", "distance": 42.5}, updated_by=1)

    assert updated.title == "New title"
    assert updated.distance == 42.5
    assert updated.meeting_point == "Cafe"
    assert updated.updated_by == 1


def test_update_rejects_unknown_ride_and_fields(repository, make_ride):
    with pytest.raises(RideNotFoundError):
        repository.update("missing", {"title": "x"})
    ride = make_ride()
    with pytest.raises(ValueError):
        repository.update(ride.id, {"colour": "red"})


def test_delete_removes_ride(repository, make_ride):
    ride = make_ride()
    deleted = repository.delete(ride.id)
    assert deleted.id == ride.id
    with pytest.raises(RideNotFoundError):
        repository.get(ride.id)


def test_list_by_creator_orders_by_date_desc_and_pages(repository, make_ride):
    for days in (1, 3, 2):
        make_ride(created_by=5, title=f"Ride {days}", date=NOW + timedelta(days=days))
    make_ride(created_by=6)

    first_page = repository.list_by_creator(5, skip=0, limit=2)
    assert first_page.total == 3
    assert [r.title for r in first_page.rides] == ["Ride 3", "Ride 2"]

    second_page = repository.list_by_creator(5, skip=2, limit=2)
    assert [r.title for r in second_page.rides] == ["Ride 1"]


def test_message_handles_are_deduplicated_and_pruned(repository, make_ride):
    ride = make_ride()
    a = MessageHandle(chat_id=1, message_id=10)
    b = MessageHandle(chat_id=2, message_id=20, thread_id=3)

    repository.add_message(ride.id, a)
    repository.add_message(ride.id, a)
    repository.add_message(ride.id, b)
    assert repository.get(ride.id).messages == [a, b]

    remaining = repository.remove_messages(ride.id, [a])
    assert remaining.messages == [b]


def test_only_creator_can_cancel_and_resume(repository, make_ride):
    ride = make_ride(created_by=1)

    with pytest.raises(PermissionDeniedError):
        repository.cancel(ride.id, user_id=2)

    assert repository.cancel(ride.id, user_id=1).cancelled is True
    with pytest.raises(ValidationError):
        repository.cancel(ride.id, user_id=1)

    assert repository.resume(ride.id, user_id=1).cancelled is False
    with pytest.raises(ValidationError):
        repository.resume(ride.id, user_id=1)


@pytest.mark.asyncio
async def test_create_from_parameters(repository):
    ride = await repository.create_from_parameters(
        {
            "title": "Gravel Sunday",
            "category": "gravel",
            "when": "tomorrow 9am",
            "dist": "55",
            "duration": "2h 30m",
            "speed": "22-25",
            "meet": "Old bridge",
        },
        user_id=3,
        now=NOW,
    )

    assert ride.category == "Gravel Ride"
    assert ride.distance == 55
    assert ride.duration == 150
    assert (ride.speed_min, ride.speed_max) == (22, 25)
    assert ride.meeting_point == "Old bridge"
    assert ride.date > NOW


@pytest.mark.asyncio
async def test_create_from_parameters_needs_title_and_when(repository):
    with pytest.raises(ValidationError):
        await repository.create_from_parameters({"title": "Only title"}, user_id=1, now=NOW)


@pytest.mark.asyncio
async def test_route_info_fills_missing_distance_only(repository, route_parser):
    route_parser.info = RouteInfo(distance=80, duration=200)

    ride = await repository.create_from_parameters(
        {"title": "Climb", "when": "tomorrow 9am", "route": "https://www.strava.com/routes/123", "dist": "75"},
        user_id=1,
        now=NOW,
    )

    assert ride.distance == 75
    assert ride.duration == 200


@pytest.mark.asyncio
async def test_update_from_parameters_clears_with_dash(repository, make_ride):
    ride = make_ride(created_by=1, meeting_point="Cafe", distance=40)

    updated = await repository.update_from_parameters(ride.id, {"meet": "-", "dist": "45"}, user_id=1, now=NOW)

    assert updated.meeting_point is None
    assert updated.distance == 45


@pytest.mark.asyncio
async def test_update_from_parameters_checks_creator(repository, make_ride):
    ride = make_ride(created_by=1)
    with pytest.raises(PermissionDeniedError):
        await repository.update_from_parameters(ride.id, {"title": "Mine now"}, user_id=2, now=NOW)


@pytest.mark.asyncio
async def test_duplicate_defaults_to_next_day(repository, make_ride):
    original = make_ride(created_by=1, meeting_point="Cafe")

    copy = await repository.duplicate_from_parameters(original.id, {"title": "Again"}, user_id=2, now=NOW)

    assert copy.id != original.id
    assert copy.title == "Again"
    assert copy.meeting_point == "Cafe"
    assert copy.date == original.date + timedelta(days=1)
    assert copy.created_by == 2
    assert copy.messages == []


@pytest.mark.asyncio
async def test_duplicate_of_old_ride_needs_a_new_date(repository):
    old = repository.create({"title": "Last year", "date": NOW - timedelta(days=30)}, created_by=1)
    with pytest.raises(ValidationError):
        await repository.duplicate_from_parameters(old.id, {}, user_id=1, now=NOW)


def test_list_by_creator_second_page_of_five(repository, make_ride):
    for days in range(1, 6):
        make_ride(created_by=8, title=f"Day {days}", date=NOW + timedelta(days=days))

    page = repository.list_by_creator(8, skip=2, limit=2)

    assert page.total == 5
    assert [r.title for r in page.rides] == ["Day 3", "Day 2"]
