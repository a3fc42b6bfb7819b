"""
Shared fixtures: an in-memory database per test and a scriptable chat
transport that records every call instead of talking to Telegram.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ridebot.agent.conversation_store import ConversationStore
from ridebot.agent.ride_wizard import RideWizard
from ridebot.core.exceptions import TransportFailure, TransportFailureKind
from ridebot.db.init_db import init_db
from ridebot.schemas.ride import MessageHandle, ParticipantInfo
from ridebot.services.participation_store import ParticipationStore
from ridebot.services.ride_messages import RideMessagesService
from ridebot.services.ride_repository import RideRepository
from ridebot.services.route_parser import RouteInfo
from ridebot.telegram.transport import Transport

NOW = datetime(2025, 7, 19, 12, 0, tzinfo=timezone.utc)


class FakeTransport(Transport):
    """Records calls. ``fail_edit``/``fail_send``/``fail_delete`` script failures per chat."""

    def __init__(self):
        self.sent: List[dict] = []
        self.edits: List[dict] = []
        self.deleted: List[MessageHandle] = []
        self.fail_edit: Dict[int, TransportFailureKind] = {}
        self.fail_send: Dict[int, TransportFailureKind] = {}
        self.fail_delete: Dict[int, TransportFailureKind] = {}
        self.admin_chats = set()
        self._next_id = 1000

    async def send_message(self, chat_id, text, keyboard=None, thread_id=None) -> MessageHandle:
        if chat_id in self.fail_send:
            raise TransportFailure(self.fail_send[chat_id], "scripted send failure")
        self._next_id += 1
        handle = MessageHandle(chat_id=chat_id, message_id=self._next_id, thread_id=thread_id)
        self.sent.append({"handle": handle, "text": text, "keyboard": keyboard})
        return handle

    async def edit_message(self, handle, text, keyboard=None) -> None:
        if handle.chat_id in self.fail_edit:
            raise TransportFailure(self.fail_edit[handle.chat_id], "scripted edit failure")
        self.edits.append({"handle": handle, "text": text, "keyboard": keyboard})

    async def delete_message(self, handle) -> None:
        if handle.chat_id in self.fail_delete:
            raise TransportFailure(self.fail_delete[handle.chat_id], "scripted delete failure")
        self.deleted.append(handle)

    async def bot_is_admin(self, chat_id) -> bool:
        return chat_id in self.admin_chats

    def last_text(self) -> str:
        events = self.sent + self.edits
        return events[-1]["text"] if events else ""


class FakeRouteParser:
    """Returns a fixed ``RouteInfo`` for every URL."""

    def __init__(self, info: Optional[RouteInfo] = None):
        self.info = info
        self.calls: List[str] = []

    async def parse_route(self, url):
        self.calls.append(url)
        return self.info


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def route_parser():
    return FakeRouteParser()


@pytest.fixture
def repository(session_factory, route_parser):
    return RideRepository(session_factory=session_factory, route_parser=route_parser)


@pytest.fixture
def participation(session_factory):
    return ParticipationStore(session_factory=session_factory)


@pytest.fixture
def messages(repository, transport):
    return RideMessagesService(repository, transport)


@pytest.fixture
def conversations(session_factory):
    return ConversationStore(session_factory=session_factory, ttl_seconds=3600)


@pytest.fixture
def wizard(conversations, repository, messages, transport, route_parser):
    return RideWizard(
        conversations, repository, messages, transport,
        route_parser=route_parser, private_only=False, clock=lambda: NOW,
    )


@pytest.fixture
def make_ride(repository):
    def _make(created_by=1, **fields):
        data = {"title": "Evening Ride", "date": NOW + timedelta(days=2)}
        data.update(fields)
        return repository.create(data, created_by=created_by)
    return _make


def rider(user_id, first_name="Rider", username=None, last_name=None) -> ParticipantInfo:
    return ParticipantInfo(user_id=user_id, username=username, first_name=first_name, last_name=last_name)
