"""
Conversation state model: persistent wizard sessions.

Sessions survive a restart and are shared by every worker that talks to
the same database, so the one-session-per-key rule is enforced by a
unique constraint rather than an in-memory dict.
"""
from sqlalchemy import BigInteger, Column, Integer, String, UniqueConstraint
from sqlalchemy.types import JSON

from ridebot.db.base import Base, UTCDateTime, utcnow


class ConversationState(Base):
    """
    Persists one ride wizard per (user, chat).

    Schema:
        user_id, chat_id: session key (unique together)
        step: current wizard step (e.g. "title", "distance", "confirm")
        payload: JSON blob with collected field values, the mode
                 (create/update/duplicate), the original ride id and the
                 id of the single message the wizard keeps editing
        updated_at: last activity, used for idle eviction

    Lifecycle:
        1. Created when a wizard starts (a second start is rejected)
        2. Updated on every step transition
        3. Deleted on cancel, on confirm, or once idle longer than the TTL
    """
    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("user_id", "chat_id", name="uq_conversation_user_chat"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False)
    chat_id = Column(BigInteger, nullable=False)
    step = Column(String(32), nullable=False, default="title")
    payload = Column(JSON, nullable=False, default=dict)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ConversationState user_id={self.user_id} chat_id={self.chat_id} step={self.step}>"
