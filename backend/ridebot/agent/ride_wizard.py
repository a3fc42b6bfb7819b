"""
Ride wizard: step-by-step ride entry over chat.

One session per (user, chat). The wizard keeps a single "current step"
message that it edits in place; the user's inputs and any error replies
are deleted once the step moves on. On confirm it writes through the
ride repository and hands the ride to the message synchronizer. A new ride
dated in the past is refused and the session stays on the confirmation
step; once the write starts, the session is gone whatever happens.
"""
import logging
from datetime import datetime, timedelta, timezone
from html import escape
from typing import Callable, List, Optional

from ridebot.agent.conversation_store import ConversationStore, WizardMode, WizardSession
from ridebot.agent.wizard_fields import (
    CONFIRM_STEP,
    FIRST_STEP,
    SUMMARY_REQUIRED,
    WIZARD_FIELDS,
    FieldType,
    WizardField,
    compute_next_step,
    format_value,
    has_value,
    previous_step,
)
from ridebot.core.config import settings
from ridebot.core.exceptions import (
    PermissionDeniedError,
    RideBotError,
    SessionExpiredError,
    TransportFailure,
    TransportFailureKind,
    ValidationError,
)
from ridebot.schemas.ride import MessageHandle, RideRecord
from ridebot.services import validators
from ridebot.services.date_parser import PAST_DATE_ERROR, validate_date
from ridebot.services.message_formatter import BUTTONS, Button
from ridebot.services.ride_messages import RideMessagesService
from ridebot.services.ride_repository import UPDATABLE_FIELDS, RideRepository
from ridebot.services.route_parser import RouteParser, is_known_provider
from ridebot.telegram.transport import Transport

logger = logging.getLogger(__name__)

PRIVATE_ONLY_MESSAGE = (
    "⚠️ Wizard commands are only available in private chats with the bot. "
    "Please use the command with parameters instead."
)
NEEDS_ADMIN_MESSAGE = (
    "⚠️ I need administrator permissions in group chats to use the wizard mode. "
    "Please add me as an administrator or use the non-wizard commands instead."
)

# Wizard data keys that end up on the ride
_RIDE_KEYS = UPDATABLE_FIELDS - {"cancelled"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def prefill_from_ride(ride: RideRecord, shift_days: int = 0) -> dict:
    data = {key: getattr(ride, key) for key in _RIDE_KEYS if getattr(ride, key) not in (None, "")}
    if shift_days:
        data["date"] = ride.date + timedelta(days=shift_days)
    return data


class RideWizard:
    def __init__(
        self,
        store: ConversationStore,
        repository: RideRepository,
        messages: RideMessagesService,
        transport: Transport,
        route_parser: RouteParser = None,
        private_only: bool = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.repository = repository
        self.messages = messages
        self.transport = transport
        self.route_parser = route_parser or RouteParser()
        self.private_only = settings.WIZARD_ONLY_IN_PRIVATE_CHATS if private_only is None else private_only
        self._clock = clock

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(
        self,
        user_id: int,
        chat_id: int,
        chat_type: str = "private",
        thread_id: Optional[int] = None,
        mode: str = WizardMode.CREATE,
        original_ride: Optional[RideRecord] = None,
    ) -> WizardSession:
        """Open a session and show the first step.

        ``update`` and ``duplicate`` are pre-filled from ``original_ride``;
        a duplicate is moved one day later.
        """
        await self._check_chat(chat_id, chat_type)

        data = {}
        if original_ride is not None:
            data = prefill_from_ride(original_ride, shift_days=1 if mode == WizardMode.DUPLICATE else 0)

        session = self.store.create(WizardSession(
            user_id=user_id,
            chat_id=chat_id,
            step=FIRST_STEP,
            data=data,
            mode=mode,
            original_ride_id=original_ride.id if original_ride else None,
            thread_id=thread_id,
            chat_type=chat_type,
        ))
        logger.info(f"[Wizard] Started {mode} session {session.key}")

        try:
            await self._show_step(session)
        except TransportFailure:
            self.store.delete(user_id, chat_id)
            raise
        self.store.save(session)
        return session

    async def handle_input(self, user_id: int, chat_id: int, text: str, message_id: Optional[int] = None) -> bool:
        """Feed a text message to the active session. Returns False when there is none."""
        session = self.store.get(user_id, chat_id)
        if session is None:
            return False
        if not await self._still_allowed(session):
            return True

        if message_id is not None:
            session.stale_message_ids.append(message_id)

        if session.step == CONFIRM_STEP:
            # Nothing to type here; just tidy up
            await self._delete_stale(session)
            self.store.save(session)
            return True

        field = WIZARD_FIELDS[session.step]
        result = self._validate(field, text)
        if not result.valid:
            await self._report_error(session, result.error)
            return True

        self._apply(field, session, result.value)
        if field.type is FieldType.ROUTE and session.data.get("route_link"):
            await self._fill_from_route(session)

        session.step = compute_next_step(field.step, session.data)
        await self._delete_stale(session)
        await self._advance(session)
        return True

    async def handle_action(self, user_id: int, chat_id: int, action: str, param: Optional[str] = None) -> str:
        """Apply a button press. Returns the text for the callback answer."""
        session = self.store.get(user_id, chat_id)
        if session is None:
            raise SessionExpiredError()
        if not await self._still_allowed(session):
            return PRIVATE_ONLY_MESSAGE if self.private_only else NEEDS_ADMIN_MESSAGE

        if action == "cancel":
            await self._teardown(session)
            await self._send_plain(session, "Ride creation cancelled")
            return "Cancelled"

        if action == "confirm":
            return await self._confirm(session)

        if action == "back":
            target = previous_step(session.step)
            if target is None:
                raise ValidationError("This is the first step.")
            session.step = target

        elif action == "skip":
            field = self._field(session)
            if not field.skippable:
                raise ValidationError("This step can't be skipped.")
            for key in field.data_keys:
                session.data.pop(key, None)
            session.step = field.next_step

        elif action == "keep":
            field = self._field(session)
            if not has_value(field, session.data):
                raise ValidationError("There is no current value to keep.")
            session.step = field.next_step

        elif action == "category":
            field = self._field(session)
            if field.type is not FieldType.CATEGORY or param not in validators.CATEGORIES:
                raise ValidationError("Invalid category selected")
            session.data["category"] = param
            session.step = field.next_step

        else:
            raise ValidationError(f"Unknown wizard action: {action}")

        await self._delete_stale(session)
        await self._advance(session)
        return ""

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _field(self, session: WizardSession) -> WizardField:
        if session.step == CONFIRM_STEP:
            raise ValidationError("Not available on the confirmation step.")
        return WIZARD_FIELDS[session.step]

    def _validate(self, field: WizardField, text: str) -> validators.ValidationResult:
        if validators.is_clear_input(text):
            if field.clearable:
                return validators.ValidationResult.ok(None)
            if not field.required:
                # Category: blank or "-" falls back to the default
                return field.validator("")
        if field.type is FieldType.DATE:
            return validate_date(text, now=self._clock())
        return field.validator(text)

    def _apply(self, field: WizardField, session: WizardSession, value) -> None:
        if value is None:
            for key in field.data_keys:
                session.data.pop(key, None)
        elif field.type is FieldType.SPEED:
            for key in field.data_keys:
                if value.get(key) is None:
                    session.data.pop(key, None)
                else:
                    session.data[key] = value[key]
        else:
            session.data[field.data_keys[0]] = value

    async def _fill_from_route(self, session: WizardSession) -> None:
        link = session.data["route_link"]
        if not is_known_provider(link):
            return
        info = await self.route_parser.parse_route(link)
        if info is None:
            return
        if info.distance:
            session.data["distance"] = info.distance
        if info.duration:
            session.data["duration"] = info.duration

    async def _advance(self, session: WizardSession) -> None:
        try:
            await self._show_step(session)
        except TransportFailure:
            logger.warning(f"[Wizard] Could not show step {session.step} for {session.key}; closing session")
            self.store.delete(session.user_id, session.chat_id)
            raise
        self.store.save(session)

    def render_step(self, session: WizardSession):
        if session.step == CONFIRM_STEP:
            return self._render_confirmation(session)

        field = WIZARD_FIELDS[session.step]
        text = field.prompt
        current = format_value(field, session.data)
        if current is not None:
            text += f"\n\nCurrent value: {escape(current)}"

        keyboard: List[List[Button]] = []
        if field.type is FieldType.CATEGORY:
            keyboard.extend([[Button(name, f"wizard:category:{name}")] for name in validators.CATEGORIES])

        row = []
        if current is not None:
            row.append(Button(BUTTONS["keep"], "wizard:keep"))
        if field.previous_step:
            row.append(Button(BUTTONS["back"], "wizard:back"))
        if field.skippable:
            row.append(Button(BUTTONS["skip"], "wizard:skip"))
        if row:
            keyboard.append(row)
        keyboard.append([Button(BUTTONS["cancel"], "wizard:cancel")])
        return text, keyboard

    def _render_confirmation(self, session: WizardSession):
        data = dict(session.data)
        data.setdefault("category", validators.DEFAULT_CATEGORY)

        lines = [f"<b>Please confirm the {'update' if session.is_update else 'ride'} details:</b>", ""]
        for field in WIZARD_FIELDS.values():
            value = format_value(field, data)
            if value is None:
                if field.step in SUMMARY_REQUIRED:
                    lines.append(f"{field.label}: not set")
                continue
            lines.append(f"{field.label}: {escape(value)}")

        keyboard = [
            [
                Button(BUTTONS["back"], "wizard:back"),
                Button(BUTTONS["update"] if session.is_update else BUTTONS["create"], "wizard:confirm"),
            ],
            [Button(BUTTONS["cancel"], "wizard:cancel")],
        ]
        return "\n".join(lines), keyboard

    async def _show_step(self, session: WizardSession) -> None:
        text, keyboard = self.render_step(session)
        if session.primary_message_id is not None:
            handle = MessageHandle(
                chat_id=session.chat_id, message_id=session.primary_message_id, thread_id=session.thread_id
            )
            try:
                await self.transport.edit_message(handle, text, keyboard=keyboard)
                return
            except TransportFailure as e:
                if e.kind is not TransportFailureKind.MESSAGE_GONE:
                    raise
                logger.info(f"[Wizard] Step message for {session.key} is gone, sending a new one")
        handle = await self.transport.send_message(
            session.chat_id, text, keyboard=keyboard, thread_id=session.thread_id
        )
        session.primary_message_id = handle.message_id

    async def _report_error(self, session: WizardSession, error: str) -> None:
        # Previous errors and inputs go; the latest input stays until the step is answered
        latest_input = session.stale_message_ids.pop() if session.stale_message_ids else None
        await self._delete_stale(session)
        if latest_input is not None:
            session.stale_message_ids.append(latest_input)
        try:
            handle = await self.transport.send_message(session.chat_id, error, thread_id=session.thread_id)
            session.stale_message_ids.append(handle.message_id)
        except TransportFailure as e:
            logger.warning(f"[Wizard] Could not report validation error to {session.key}: {e.reason}")
        self.store.save(session)

    async def _delete_stale(self, session: WizardSession) -> None:
        for message_id in reversed(session.stale_message_ids):
            try:
                await self.transport.delete_message(
                    MessageHandle(chat_id=session.chat_id, message_id=message_id, thread_id=session.thread_id)
                )
            except TransportFailure as e:
                logger.info(f"[Wizard] Could not delete message {message_id} in {session.chat_id}: {e.reason}")
        session.stale_message_ids = []

    async def _send_plain(self, session: WizardSession, text: str) -> None:
        try:
            await self.transport.send_message(session.chat_id, text, thread_id=session.thread_id)
        except TransportFailure as e:
            logger.warning(f"[Wizard] Could not send {text!r} to {session.chat_id}: {e.reason}")

    async def _teardown(self, session: WizardSession) -> None:
        """Remove the session and every message it left behind."""
        self.store.delete(session.user_id, session.chat_id)
        await self._delete_stale(session)
        if session.primary_message_id is not None:
            try:
                await self.transport.delete_message(MessageHandle(
                    chat_id=session.chat_id, message_id=session.primary_message_id, thread_id=session.thread_id
                ))
            except TransportFailure as e:
                logger.info(f"[Wizard] Could not delete step message of {session.key}: {e.reason}")
        logger.info(f"[Wizard] Closed session {session.key}")

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def _ride_data(self, session: WizardSession) -> dict:
        data = {key: session.data.get(key) for key in _RIDE_KEYS}
        data["category"] = data.get("category") or validators.DEFAULT_CATEGORY
        return data

    async def _confirm(self, session: WizardSession) -> str:
        if session.step != CONFIRM_STEP:
            raise ValidationError("Please finish all steps before confirming.")
        if not session.is_update and session.data["date"] <= self._clock():
            raise ValidationError(PAST_DATE_ERROR)

        await self._teardown(session)
        try:
            if session.is_update:
                ride = self.repository.get(session.original_ride_id)
                self.repository.require_creator(ride, session.user_id, "update")
                self.repository.update(ride.id, self._ride_data(session), updated_by=session.user_id)
                await self.messages.resync(ride.id)
                return "Ride updated successfully!"

            ride = self.repository.create(self._ride_data(session), created_by=session.user_id)
            await self.messages.post_initial(
                ride,
                session.chat_id,
                thread_id=session.thread_id,
                is_for_creator=session.chat_type == "private" and session.chat_id == ride.created_by,
            )
            if session.mode == WizardMode.DUPLICATE:
                return "Ride duplicated successfully!"
            return "Ride created successfully!"
        except RideBotError as e:
            logger.warning(f"[Wizard] Confirm failed for {session.key}: {e}")
            await self._send_plain(session, f"❌ {e}")
            return f"Error: {e}"
        except Exception as e:
            logger.error(f"[Wizard] Confirm failed for {session.key}: {e}", exc_info=True)
            await self._send_plain(session, "❌ Something went wrong while saving the ride.")
            return "Error: something went wrong while saving the ride"

    # ------------------------------------------------------------------
    # Chat checks
    # ------------------------------------------------------------------

    async def _check_chat(self, chat_id: int, chat_type: str) -> None:
        if chat_type == "private":
            return
        if self.private_only:
            raise PermissionDeniedError(PRIVATE_ONLY_MESSAGE)
        try:
            is_admin = await self.transport.bot_is_admin(chat_id)
        except TransportFailure as e:
            logger.warning(f"[Wizard] Could not check admin rights in {chat_id}: {e.reason}")
            is_admin = False
        if not is_admin:
            raise PermissionDeniedError(NEEDS_ADMIN_MESSAGE)

    async def _still_allowed(self, session: WizardSession) -> bool:
        try:
            await self._check_chat(session.chat_id, session.chat_type)
        except PermissionDeniedError as e:
            await self._teardown(session)
            await self._send_plain(session, str(e))
            return False
        return True
