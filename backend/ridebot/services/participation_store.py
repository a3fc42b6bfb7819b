"""
Participation store: joined / thinking / skipped per ride.

A user has at most one ``ride_participants`` row per ride, so a state
change is a single-row UPDATE (or INSERT the first time) and the three
sets can never overlap. Two concurrent first-time writes for the same user
race on the unique constraint; the loser retries as an UPDATE.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ridebot.core.audit import AuditLog
from ridebot.core.exceptions import RideNotFoundError
from ridebot.db.base import utcnow
from ridebot.db.session import SessionLocal
from ridebot.models.participant import Participant
from ridebot.models.ride import Ride
from ridebot.schemas.ride import (
    ParticipantInfo,
    ParticipantRecord,
    ParticipationRecord,
    ParticipationState,
)

logger = logging.getLogger(__name__)

_MAX_ATTEMPTS = 3


@dataclass
class ParticipationChange:
    ride_id: str
    user_id: int
    previous_state: Optional[ParticipationState]
    state: ParticipationState

    @property
    def changed(self) -> bool:
        return self.previous_state != self.state


def participation_from_rows(rows: List[Participant]) -> ParticipationRecord:
    record = ParticipationRecord()
    for row in sorted(rows, key=lambda r: (r.updated_at, r.id)):
        getattr(record, row.state).append(ParticipantRecord.model_validate(row))
    return record


class ParticipationStore:
    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def _current_state(self, db: Session, ride_id: str, user_id: int) -> Optional[ParticipationState]:
        row = (
            db.query(Participant.state)
            .filter(Participant.ride_id == ride_id, Participant.user_id == user_id)
            .first()
        )
        return ParticipationState(row[0]) if row else None

    def set_participation(
        self,
        ride_id: str,
        participant: ParticipantInfo,
        state: ParticipationState,
    ) -> ParticipationChange:
        """
        Move ``participant`` into ``state`` for the ride.

        Idempotent; the name snapshot is refreshed every time.
        Raises ``RideNotFoundError`` for an unknown ride.
        """
        state = ParticipationState(state)
        db = self._session_factory()
        try:
            if db.query(Ride.id).filter(Ride.id == ride_id).first() is None:
                raise RideNotFoundError(ride_id)

            previous = self._current_state(db, ride_id, participant.user_id)
            values = {
                "state": state.value,
                "username": participant.username,
                "first_name": participant.first_name,
                "last_name": participant.last_name,
                "updated_at": utcnow(),
            }

            for attempt in range(1, _MAX_ATTEMPTS + 1):
                updated = (
                    db.query(Participant)
                    .filter(Participant.ride_id == ride_id, Participant.user_id == participant.user_id)
                    .update(values, synchronize_session=False)
                )
                if updated:
                    db.commit()
                    break
                try:
                    db.add(Participant(ride_id=ride_id, user_id=participant.user_id, **values))
                    db.commit()
                    break
                except IntegrityError:
                    # Someone inserted the row first; retry as an update
                    db.rollback()
                    logger.info(
                        f"[Participation] Insert race for ride={ride_id} user={participant.user_id}, "
                        f"retrying ({attempt}/{_MAX_ATTEMPTS})"
                    )
            else:
                raise RuntimeError(f"Could not set participation for ride {ride_id}")

            change = ParticipationChange(ride_id, participant.user_id, previous, state)
            if change.changed:
                logger.info(
                    f"[Participation] ride={ride_id} user={participant.user_id} "
                    f"{previous.value if previous else 'none'} -> {state.value}"
                )
                AuditLog.log_action(
                    "participation", "ride", ride_id, participant.user_id,
                    changes={"from": previous.value if previous else None, "to": state.value},
                )
            return change
        finally:
            db.close()

    def get_participation(self, ride_id: str) -> ParticipationRecord:
        db = self._session_factory()
        try:
            rows = db.query(Participant).filter(Participant.ride_id == ride_id).all()
            return participation_from_rows(rows)
        finally:
            db.close()
