"""
CONVERSATION STORE TESTS

Sessions survive a round trip through the database and expire after the
idle TTL.
"""
from datetime import datetime, timedelta, timezone

import pytest

from ridebot.agent.conversation_store import ConversationStore, WizardMode, WizardSession
from ridebot.core.exceptions import SessionActiveError


class Clock:
    def __init__(self):
        self.now = datetime(2025, 7, 19, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(session_factory, clock):
    return ConversationStore(session_factory=session_factory, ttl_seconds=600, clock=clock)


def test_round_trip_keeps_payload(store):
    date = datetime(2025, 7, 20, 9, 0, tzinfo=timezone.utc)
    store.create(WizardSession(
        user_id=1, chat_id=2, step="date",
        data={"title": "Ride", "date": date, "distance": 40.5},
        mode=WizardMode.DUPLICATE, original_ride_id="abc", thread_id=7,
        chat_type="supergroup", primary_message_id=99, stale_message_ids=[100, 101],
    ))

    session = store.get(1, 2)

    assert session.step == "date"
    assert session.data == {"title": "Ride", "date": date, "distance": 40.5}
    assert session.mode == WizardMode.DUPLICATE
    assert session.original_ride_id == "abc"
    assert session.thread_id == 7
    assert session.chat_type == "supergroup"
    assert session.primary_message_id == 99
    assert session.stale_message_ids == [100, 101]


def test_second_create_is_rejected(store):
    store.create(WizardSession(user_id=1, chat_id=2))
    with pytest.raises(SessionActiveError):
        store.create(WizardSession(user_id=1, chat_id=2))
    # Other chats are separate sessions
    store.create(WizardSession(user_id=1, chat_id=3))


def test_save_and_delete(store):
    session = store.create(WizardSession(user_id=1, chat_id=2))
    session.step = "category"
    store.save(session)
    assert store.get(1, 2).step == "category"

    assert store.delete(1, 2)
    assert store.get(1, 2) is None
    assert not store.delete(1, 2)


def test_idle_session_expires(store, clock):
    store.create(WizardSession(user_id=1, chat_id=2))
    clock.now += timedelta(seconds=601)

    assert store.get(1, 2) is None
    # Gone for good, so a new one can start
    store.create(WizardSession(user_id=1, chat_id=2))


def test_activity_extends_ttl(store, clock):
    session = store.create(WizardSession(user_id=1, chat_id=2))
    clock.now += timedelta(seconds=500)
    store.save(session)
    clock.now += timedelta(seconds=500)

    assert store.get(1, 2) is not None


def test_start_evicts_other_idle_sessions(store, clock):
    store.create(WizardSession(user_id=1, chat_id=2))
    store.create(WizardSession(user_id=3, chat_id=4))
    clock.now += timedelta(seconds=601)

    store.create(WizardSession(user_id=5, chat_id=6))

    assert store.evict_expired() == 0
    assert store.get(1, 2) is None
    assert store.get(3, 4) is None
