"""
PARTICIPATION STORE TESTS

A user is in at most one of joined / thinking / skipped for a ride, and
repeating the same choice changes nothing, even when the presses race
each other from several threads.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import NOW, rider
from ridebot.core.exceptions import RideNotFoundError
from ridebot.db.init_db import init_db
from ridebot.db.session import make_engine
from ridebot.schemas.ride import ParticipationState
from ridebot.services.participation_store import ParticipationStore
from ridebot.services.ride_repository import RideRepository


def test_join_then_switch_moves_user_between_sets(participation, make_ride):
    ride = make_ride()

    first = participation.set_participation(ride.id, rider(10, "Ann"), ParticipationState.JOINED)
    assert first.previous_state is None
    assert first.changed

    second = participation.set_participation(ride.id, rider(10, "Ann"), ParticipationState.THINKING)
    assert second.previous_state == ParticipationState.JOINED
    assert second.changed

    record = participation.get_participation(ride.id)
    assert [p.user_id for p in record.joined] == []
    assert [p.user_id for p in record.thinking] == [10]
    assert record.skipped == []


def test_same_state_twice_is_a_no_op(participation, make_ride):
    ride = make_ride()
    participation.set_participation(ride.id, rider(10), ParticipationState.SKIPPED)

    again = participation.set_participation(ride.id, rider(10), ParticipationState.SKIPPED)

    assert not again.changed
    record = participation.get_participation(ride.id)
    assert len(record.skipped) == 1


def test_name_snapshot_is_refreshed(participation, make_ride):
    ride = make_ride()
    participation.set_participation(ride.id, rider(10, "Ann"), ParticipationState.JOINED)
    participation.set_participation(ride.id, rider(10, "Annie", username="annie"), ParticipationState.JOINED)

    joined = participation.get_participation(ride.id).joined
    assert joined[0].first_name == "Annie"
    assert joined[0].username == "annie"


def test_sets_keep_join_order(participation, make_ride):
    ride = make_ride()
    for user_id in (3, 1, 2):
        participation.set_participation(ride.id, rider(user_id), ParticipationState.JOINED)

    assert [p.user_id for p in participation.get_participation(ride.id).joined] == [3, 1, 2]


def test_unknown_ride_raises(participation):
    with pytest.raises(RideNotFoundError):
        participation.set_participation("nope", rider(1), ParticipationState.JOINED)


def test_participation_is_visible_on_ride_record(participation, repository, make_ride):
    ride = make_ride()
    participation.set_participation(ride.id, rider(10), ParticipationState.JOINED)
    participation.set_participation(ride.id, rider(11), ParticipationState.THINKING)

    fetched = repository.get(ride.id)

    assert fetched.participation.state_of(10) == ParticipationState.JOINED
    assert fetched.participation.state_of(11) == ParticipationState.THINKING
    assert fetched.participation.state_of(12) is None


def test_threaded_choices_leave_user_in_exactly_one_set(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'rides.db'}")
    init_db(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    ride = RideRepository(factory).create({"title": "Race", "date": NOW + timedelta(days=1)}, created_by=1)
    store = ParticipationStore(factory)

    states = [ParticipationState.JOINED, ParticipationState.THINKING, ParticipationState.SKIPPED] * 10
    go = threading.Event()

    def choose(state):
        go.wait()
        return store.set_participation(ride.id, rider(42), state)

    try:
        with ThreadPoolExecutor(max_workers=len(states)) as pool:
            futures = [pool.submit(choose, state) for state in states]
            go.set()
            changes = [future.result() for future in futures]

        record = store.get_participation(ride.id)
        memberships = sum(
            1 for group in (record.joined, record.thinking, record.skipped) if any(p.user_id == 42 for p in group)
        )
        assert len(changes) == len(states)
        assert memberships == 1
        assert record.state_of(42) in states
    finally:
        engine.dispose()
