"""
Ride repository.

Owns ride rows, their tracked chat messages and (through the
participation table) who is coming. Every method opens its own session,
the way the rest of the bot talks to the database.

Ride ids are 11 base-62 characters derived from 64 random bits, so they
can't be enumerated.
"""
import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ridebot.core.audit import AuditLog
from ridebot.core.exceptions import PermissionDeniedError, RideNotFoundError, ValidationError
from ridebot.db.base import utcnow
from ridebot.db.session import SessionLocal
from ridebot.models.participant import Participant
from ridebot.models.ride import Ride
from ridebot.schemas.ride import MessageHandle, RideList, RideRecord
from ridebot.services.date_parser import PAST_DATE_ERROR
from ridebot.services.field_processor import process_ride_fields
from ridebot.services.participation_store import participation_from_rows
from ridebot.services.route_parser import RouteParser
from ridebot.services.validators import DEFAULT_CATEGORY

logger = logging.getLogger(__name__)

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
RIDE_ID_LENGTH = 11

# Columns a caller may change after creation
UPDATABLE_FIELDS = {
    "title",
    "category",
    "organizer",
    "date",
    "meeting_point",
    "route_link",
    "distance",
    "duration",
    "speed_min",
    "speed_max",
    "additional_info",
    "cancelled",
}

# Copied when a ride is duplicated
_DUPLICATED_FIELDS = UPDATABLE_FIELDS - {"cancelled"}


def generate_ride_id() -> str:
    """64 random bits as base-62, left-padded with zeros to 11 characters."""
    value = secrets.randbits(64)
    digits = []
    while value:
        value, remainder = divmod(value, 62)
        digits.append(BASE62_ALPHABET[remainder])
    return "".join(reversed(digits)).rjust(RIDE_ID_LENGTH, "0")


def _to_record(ride: Ride) -> RideRecord:
    record = RideRecord.model_validate(ride)
    record.participation = participation_from_rows(ride.participants)
    return record


def _dump_handles(handles: Iterable[MessageHandle]) -> List[Dict[str, Any]]:
    return [handle.model_dump() for handle in handles]


class RideRepository:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        route_parser: Optional[RouteParser] = None,
    ):
        self._session_factory = session_factory
        self.route_parser = route_parser

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def create(self, data: Dict[str, Any], created_by: int) -> RideRecord:
        unknown = set(data) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ride fields: {sorted(unknown)}")
        if not data.get("title"):
            raise ValidationError("Title cannot be empty")
        if not data.get("date"):
            raise ValidationError("Please provide the date and time of the ride.")

        fields = dict(data)
        fields["category"] = fields.get("category") or DEFAULT_CATEGORY
        fields["cancelled"] = bool(fields.get("cancelled", False))

        db = self._session_factory()
        try:
            ride = Ride(id=generate_ride_id(), created_by=created_by, messages=[], **fields)
            db.add(ride)
            db.commit()
            db.refresh(ride)
            logger.info(f"[Rides] Created ride {ride.id} {ride.title!r} by user {created_by}")
            AuditLog.log_action("create", "ride", ride.id, created_by)
            return _to_record(ride)
        finally:
            db.close()

    def get(self, ride_id: str) -> RideRecord:
        db = self._session_factory()
        try:
            ride = db.query(Ride).filter(Ride.id == ride_id).first()
            if ride is None:
                raise RideNotFoundError(ride_id)
            return _to_record(ride)
        finally:
            db.close()

    def update(self, ride_id: str, updates: Dict[str, Any], updated_by: Optional[int] = None) -> RideRecord:
        """Apply ``updates`` as one UPDATE statement (last writer wins per field)."""
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown ride fields: {sorted(unknown)}")
        if "title" in updates and not updates["title"]:
            raise ValidationError("Title cannot be empty")
        if "date" in updates and updates["date"] is None:
            raise ValidationError("The ride date can't be cleared.")
        if "category" in updates and not updates["category"]:
            updates = {**updates, "category": DEFAULT_CATEGORY}

        if not updates:
            return self.get(ride_id)

        values = {**updates, "updated_at": utcnow()}
        if updated_by is not None:
            values["updated_by"] = updated_by

        db = self._session_factory()
        try:
            count = db.query(Ride).filter(Ride.id == ride_id).update(values, synchronize_session=False)
            if not count:
                db.rollback()
                raise RideNotFoundError(ride_id)
            db.commit()
            logger.info(f"[Rides] Updated ride {ride_id}: {sorted(updates)}")
            AuditLog.log_action("update", "ride", ride_id, updated_by, changes=updates)
        finally:
            db.close()
        return self.get(ride_id)

    def delete(self, ride_id: str) -> RideRecord:
        """Hard-delete the ride and its participation. Returns the deleted ride."""
        db = self._session_factory()
        try:
            ride = db.query(Ride).filter(Ride.id == ride_id).first()
            if ride is None:
                raise RideNotFoundError(ride_id)
            record = _to_record(ride)
            db.query(Participant).filter(Participant.ride_id == ride_id).delete(synchronize_session=False)
            db.query(Ride).filter(Ride.id == ride_id).delete(synchronize_session=False)
            db.commit()
            logger.info(f"[Rides] Deleted ride {ride_id}")
            AuditLog.log_action("delete", "ride", ride_id, record.created_by)
            return record
        finally:
            db.close()

    def list_by_creator(self, user_id: int, skip: int = 0, limit: int = 5) -> RideList:
        """Rides created by ``user_id``, newest scheduled date first."""
        db = self._session_factory()
        try:
            query = db.query(Ride).filter(Ride.created_by == user_id)
            total = query.count()
            rides = (
                query.order_by(Ride.date.desc(), Ride.created_at.desc())
                .offset(max(skip, 0))
                .limit(max(limit, 0))
                .all()
            )
            return RideList(rides=[_to_record(ride) for ride in rides], total=total)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Message handles
    # ------------------------------------------------------------------

    def add_message(self, ride_id: str, handle: MessageHandle) -> RideRecord:
        db = self._session_factory()
        try:
            ride = db.query(Ride).filter(Ride.id == ride_id).first()
            if ride is None:
                raise RideNotFoundError(ride_id)
            handles = [MessageHandle(**h) for h in (ride.messages or [])]
            if handle not in handles:
                handles.append(handle)
            ride.messages = _dump_handles(handles)
            db.commit()
            db.refresh(ride)
            return _to_record(ride)
        finally:
            db.close()

    def remove_messages(self, ride_id: str, handles: Iterable[MessageHandle]) -> RideRecord:
        """Drop ``handles`` from the ride's message list in one write."""
        gone = set(handles)
        db = self._session_factory()
        try:
            ride = db.query(Ride).filter(Ride.id == ride_id).first()
            if ride is None:
                raise RideNotFoundError(ride_id)
            if gone:
                kept = [h for h in (MessageHandle(**m) for m in (ride.messages or [])) if h not in gone]
                ride.messages = _dump_handles(kept)
                db.commit()
                db.refresh(ride)
                logger.info(f"[Rides] Ride {ride_id}: pruned {len(gone)} message(s), {len(kept)} left")
            return _to_record(ride)
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Access control and status
    # ------------------------------------------------------------------

    def require_creator(self, ride: RideRecord, user_id: int, action: str) -> None:
        if ride.created_by != user_id:
            AuditLog.log_access_denied(action, "ride", ride.id, user_id, "Not ride creator")
            raise PermissionDeniedError(f"Only the ride creator can {action} this ride.")

    def cancel(self, ride_id: str, user_id: int) -> RideRecord:
        ride = self.get(ride_id)
        self.require_creator(ride, user_id, "cancel")
        if ride.cancelled:
            raise ValidationError("This ride is already cancelled.")
        updated = self.update(ride_id, {"cancelled": True}, updated_by=user_id)
        AuditLog.log_action("cancel", "ride", ride_id, user_id)
        return updated

    def resume(self, ride_id: str, user_id: int) -> RideRecord:
        ride = self.get(ride_id)
        self.require_creator(ride, user_id, "resume")
        if not ride.cancelled:
            raise ValidationError("This ride is not cancelled.")
        updated = self.update(ride_id, {"cancelled": False}, updated_by=user_id)
        AuditLog.log_action("resume", "ride", ride_id, user_id)
        return updated

    # ------------------------------------------------------------------
    # Parameter-based entry points
    # ------------------------------------------------------------------

    async def create_from_parameters(
        self, params: Dict[str, str], user_id: int, now: Optional[datetime] = None
    ) -> RideRecord:
        if not params.get("title") or not params.get("when"):
            raise ValidationError("Please provide at least title and date/time.")
        data = await process_ride_fields(_without_id(params), route_parser=self.route_parser, now=now)
        return self.create(data, created_by=user_id)

    async def update_from_parameters(
        self, ride_id: str, params: Dict[str, str], user_id: int, now: Optional[datetime] = None
    ) -> RideRecord:
        ride = self.get(ride_id)
        self.require_creator(ride, user_id, "update")
        updates = await process_ride_fields(_without_id(params), route_parser=self.route_parser, now=now)
        return self.update(ride_id, updates, updated_by=user_id)

    async def duplicate_from_parameters(
        self, ride_id: str, params: Dict[str, str], user_id: int, now: Optional[datetime] = None
    ) -> RideRecord:
        """Copy ``ride_id`` with ``params`` applied on top; the date defaults to one day later."""
        original = self.get(ride_id)
        data = {field: getattr(original, field) for field in _DUPLICATED_FIELDS}
        data["date"] = original.date + timedelta(days=1)
        data.update(await process_ride_fields(_without_id(params), route_parser=self.route_parser, now=now))
        if data["date"] <= (now or datetime.now(timezone.utc)):
            raise ValidationError(PAST_DATE_ERROR)
        return self.create(data, created_by=user_id)


def _without_id(params: Dict[str, str]) -> Dict[str, str]:
    return {key: value for key, value in params.items() if key != "id"}
