from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from ridebot.db.base import Base, UTCDateTime, utcnow


class Participant(Base):
    """
    A user's participation state for one ride.

    One row per (ride, user): the unique constraint is what keeps the
    joined/thinking/skipped sets disjoint. The name fields are a snapshot
    refreshed on every state change.
    """
    __tablename__ = "ride_participants"
    __table_args__ = (
        UniqueConstraint("ride_id", "user_id", name="uq_ride_participant"),
    )

    id = Column(Integer, primary_key=True, index=True)
    ride_id = Column(String(11), ForeignKey("rides.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(BigInteger, nullable=False)
    state = Column(String(16), nullable=False)  # joined | thinking | skipped
    username = Column(String(64), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    ride = relationship("Ride", back_populates="participants")

    def __repr__(self):
        return f"<Participant ride={self.ride_id} user={self.user_id} state={self.state}>"
