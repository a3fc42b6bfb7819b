"""
Wizard session storage, one row per (user, chat).

Sessions idle for longer than the TTL count as gone: they are deleted the
next time anyone looks them up and on every new wizard start.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ridebot.core.config import settings
from ridebot.core.exceptions import SessionActiveError
from ridebot.db.base import utcnow
from ridebot.db.session import SessionLocal
from ridebot.models.conversation_state import ConversationState

logger = logging.getLogger(__name__)


class WizardMode:
    CREATE = "create"
    UPDATE = "update"
    DUPLICATE = "duplicate"


@dataclass
class WizardSession:
    user_id: int
    chat_id: int
    step: str = "title"
    data: Dict[str, Any] = field(default_factory=dict)
    mode: str = WizardMode.CREATE
    original_ride_id: Optional[str] = None
    thread_id: Optional[int] = None
    chat_type: str = "private"
    # The single message the wizard keeps editing
    primary_message_id: Optional[int] = None
    # User inputs and error replies still to be cleaned up
    stale_message_ids: List[int] = field(default_factory=list)
    updated_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.user_id}:{self.chat_id}"

    @property
    def is_update(self) -> bool:
        return self.mode == WizardMode.UPDATE

    def to_payload(self) -> Dict[str, Any]:
        data = dict(self.data)
        if isinstance(data.get("date"), datetime):
            data["date"] = data["date"].isoformat()
        return {
            "data": data,
            "mode": self.mode,
            "original_ride_id": self.original_ride_id,
            "thread_id": self.thread_id,
            "chat_type": self.chat_type,
            "primary_message_id": self.primary_message_id,
            "stale_message_ids": list(self.stale_message_ids),
        }

    @classmethod
    def from_row(cls, row: ConversationState) -> "WizardSession":
        payload = row.payload or {}
        data = dict(payload.get("data") or {})
        if isinstance(data.get("date"), str):
            data["date"] = datetime.fromisoformat(data["date"])
        return cls(
            user_id=row.user_id,
            chat_id=row.chat_id,
            step=row.step,
            data=data,
            mode=payload.get("mode", WizardMode.CREATE),
            original_ride_id=payload.get("original_ride_id"),
            thread_id=payload.get("thread_id"),
            chat_type=payload.get("chat_type", "private"),
            primary_message_id=payload.get("primary_message_id"),
            stale_message_ids=list(payload.get("stale_message_ids") or []),
            updated_at=row.updated_at,
        )


class ConversationStore:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        ttl_seconds: int = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.ttl = timedelta(seconds=ttl_seconds or settings.WIZARD_SESSION_TTL_SECONDS)
        self._clock = clock

    def _is_expired(self, row: ConversationState) -> bool:
        return row.updated_at is not None and self._clock() - row.updated_at > self.ttl

    def _row(self, db: Session, user_id: int, chat_id: int) -> Optional[ConversationState]:
        return (
            db.query(ConversationState)
            .filter(ConversationState.user_id == user_id, ConversationState.chat_id == chat_id)
            .first()
        )

    def get(self, user_id: int, chat_id: int) -> Optional[WizardSession]:
        db = self._session_factory()
        try:
            row = self._row(db, user_id, chat_id)
            if row is None:
                return None
            if self._is_expired(row):
                logger.info(f"[Wizard] Session {user_id}:{chat_id} expired at step {row.step}")
                db.delete(row)
                db.commit()
                return None
            return WizardSession.from_row(row)
        finally:
            db.close()

    def create(self, session: WizardSession) -> WizardSession:
        """Persist a new session. Raises ``SessionActiveError`` if one is already live."""
        self.evict_expired()
        db = self._session_factory()
        try:
            if self._row(db, session.user_id, session.chat_id) is not None:
                raise SessionActiveError()
            now = self._clock()
            db.add(ConversationState(
                user_id=session.user_id,
                chat_id=session.chat_id,
                step=session.step,
                payload=session.to_payload(),
                updated_at=now,
            ))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise SessionActiveError()
            session.updated_at = now
            return session
        finally:
            db.close()

    def save(self, session: WizardSession) -> WizardSession:
        db = self._session_factory()
        try:
            now = self._clock()
            count = (
                db.query(ConversationState)
                .filter(
                    ConversationState.user_id == session.user_id,
                    ConversationState.chat_id == session.chat_id,
                )
                .update(
                    {"step": session.step, "payload": session.to_payload(), "updated_at": now},
                    synchronize_session=False,
                )
            )
            db.commit()
            if not count:
                logger.warning(f"[Wizard] Tried to save missing session {session.key}")
            session.updated_at = now
            return session
        finally:
            db.close()

    def delete(self, user_id: int, chat_id: int) -> bool:
        db = self._session_factory()
        try:
            count = (
                db.query(ConversationState)
                .filter(ConversationState.user_id == user_id, ConversationState.chat_id == chat_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return bool(count)
        finally:
            db.close()

    def evict_expired(self) -> int:
        cutoff = self._clock() - self.ttl
        db = self._session_factory()
        try:
            count = (
                db.query(ConversationState)
                .filter(ConversationState.updated_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
            if count:
                logger.info(f"[Wizard] Evicted {count} idle session(s)")
            return count
        finally:
            db.close()
