from sqlalchemy import BigInteger, Boolean, Column, Float, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from ridebot.db.base import Base, UTCDateTime, utcnow


class Ride(Base):
    """
    One scheduled group ride.

    ``messages`` is the ordered list of chat messages showing this ride,
    each ``{"chat_id": ..., "message_id": ..., "thread_id": ...}``. It is
    always replaced as a whole, never mutated in place.

    Only ``created_by`` may change the ride; ``updated_by`` is audit-only.
    """
    __tablename__ = "rides"

    id = Column(String(11), primary_key=True)
    title = Column(String(255), nullable=False)
    category = Column(String(64), nullable=False)
    organizer = Column(String(255), nullable=True)
    date = Column(UTCDateTime, nullable=False, index=True)
    meeting_point = Column(Text, nullable=True)
    route_link = Column(Text, nullable=True)
    distance = Column(Float, nullable=True)  # km
    duration = Column(Integer, nullable=True)  # minutes
    speed_min = Column(Float, nullable=True)  # km/h
    speed_max = Column(Float, nullable=True)
    additional_info = Column(Text, nullable=True)
    cancelled = Column(Boolean, nullable=False, default=False)

    created_by = Column(BigInteger, nullable=False, index=True)
    updated_by = Column(BigInteger, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, default=utcnow)

    messages = Column(JSON, nullable=False, default=list)

    participants = relationship(
        "Participant",
        back_populates="ride",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Ride id={self.id} title={self.title!r} cancelled={self.cancelled}>"
