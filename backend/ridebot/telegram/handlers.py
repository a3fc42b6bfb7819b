"""
Telegram command and callback handlers.

Handlers are thin: they resolve the ride and the caller from the update,
call the repository / participation store / wizard and reply. Services
live in ``application.bot_data["services"]`` (see ``bot.py``).

Any ``RideBotError`` is shown to the user as-is; anything else is logged
and answered with a generic message.
"""
import functools
import logging
from dataclasses import dataclass
from html import escape
from typing import Optional

from telegram import Message, Update, error
from telegram.ext import ContextTypes

from ridebot.agent.conversation_store import WizardMode
from ridebot.agent.ride_wizard import RideWizard
from ridebot.core.config import settings
from ridebot.core.exceptions import RideBotError, ValidationError
from ridebot.schemas.ride import ParticipationState, RideRecord, SyncResult
from ridebot.services.message_formatter import BUTTONS, Button, MessageFormatter, format_participant, total_pages
from ridebot.services.participation_store import ParticipationStore
from ridebot.services.ride_messages import RideMessagesService
from ridebot.services.ride_repository import RideRepository
from ridebot.telegram.transport import NO_PREVIEW, PARSE_MODE, to_markup
from ridebot.telegram.utils import (
    HELP_TEXT,
    RIDE_ID_MISSING,
    START_TEXT,
    command_name,
    extract_ride_id,
    has_parameters,
    parse_ride_params,
    participant_from_user,
    unknown_params_message,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An error occurred. Please try again later."

PARTICIPATION_ACTIONS = {
    "join": ParticipationState.JOINED,
    "thinking": ParticipationState.THINKING,
    "pass": ParticipationState.SKIPPED,
}

_PARTICIPATION_ANSWERS = {
    ParticipationState.JOINED: ("You have joined the ride!", "You are already in this ride"),
    ParticipationState.THINKING: ("You are thinking about this ride", "You are already thinking about this ride"),
    ParticipationState.SKIPPED: ("You have passed on this ride", "You have already passed on this ride"),
}


@dataclass
class BotServices:
    repository: RideRepository
    participation: ParticipationStore
    messages: RideMessagesService
    wizard: RideWizard
    formatter: MessageFormatter


def get_services(context: ContextTypes.DEFAULT_TYPE) -> BotServices:
    return context.application.bot_data["services"]


def _thread_id(message: Optional[Message]) -> Optional[int]:
    if message is not None and message.is_topic_message:
        return message.message_thread_id
    return None


def _reply_text(message: Message) -> Optional[str]:
    reply = message.reply_to_message
    if reply is None:
        return None
    return reply.text or reply.caption


async def _respond(update: Update, text: str) -> None:
    try:
        if update.callback_query is not None:
            await update.callback_query.answer(text[:200])
        elif update.effective_message is not None:
            await update.effective_message.reply_text(text)
    except error.TelegramError as e:
        logger.warning(f"[Handlers] Could not deliver error message: {e}")


def guarded(handler):
    """Turn service errors into user replies."""
    @functools.wraps(handler)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
        try:
            await handler(update, context)
        except RideBotError as e:
            logger.info(f"[Handlers] {handler.__name__}: {type(e).__name__}: {e.message}")
            await _respond(update, e.message)
        except Exception as e:
            logger.error(f"[Handlers] {handler.__name__} failed: {e}", exc_info=True)
            await _respond(update, GENERIC_ERROR)
    return wrapper


def _sync_summary(result: SyncResult, action: str) -> str:
    text = f"Ride {action} successfully."
    if result.updated_count:
        text += f" Updated {result.updated_count} message(s)."
    if result.removed_count:
        text += f" Removed {result.removed_count} unavailable message(s)."
    return text


def _is_creator_chat(update: Update, ride: RideRecord) -> bool:
    chat = update.effective_chat
    return chat.type == "private" and chat.id == ride.created_by


def _require_ride_id(message: Message) -> str:
    ride_id = extract_ride_id(message.text, _reply_text(message))
    if not ride_id:
        raise ValidationError(RIDE_ID_MISSING.format(command=command_name(message.text) or "command"))
    return ride_id


def _checked_params(message: Message) -> dict:
    params, unknown = parse_ride_params(message.text)
    if unknown:
        raise ValidationError(unknown_params_message(unknown))
    return params


# ==============================================================================
# BASIC COMMANDS
# ==============================================================================

@guarded
async def handle_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text(START_TEXT, parse_mode=PARSE_MODE)


@guarded
async def handle_help(update: Update, context: ContextTypes.DEFAULT_TYPE):
    await update.effective_message.reply_text(HELP_TEXT, parse_mode=PARSE_MODE, link_preview_options=NO_PREVIEW)


# ==============================================================================
# CREATE / UPDATE / DUPLICATE
# ==============================================================================

async def _start_wizard(update: Update, services: BotServices, mode: str, original: RideRecord = None):
    message = update.effective_message
    await services.wizard.start(
        user_id=update.effective_user.id,
        chat_id=update.effective_chat.id,
        chat_type=update.effective_chat.type,
        thread_id=_thread_id(message),
        mode=mode,
        original_ride=original,
    )


@guarded
async def handle_newride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message

    if not has_parameters(message.text):
        await _start_wizard(update, services, WizardMode.CREATE)
        return

    params = _checked_params(message)
    ride = await services.repository.create_from_parameters(params, update.effective_user.id)
    await services.messages.post_initial(
        ride, update.effective_chat.id, thread_id=_thread_id(message), is_for_creator=_is_creator_chat(update, ride)
    )


@guarded
async def handle_updateride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message
    user_id = update.effective_user.id

    ride = services.repository.get(_require_ride_id(message))
    services.repository.require_creator(ride, user_id, "update")

    if not has_parameters(message.text) or set(parse_ride_params(message.text)[0]) == {"id"}:
        await _start_wizard(update, services, WizardMode.UPDATE, original=ride)
        return

    params = _checked_params(message)
    await services.repository.update_from_parameters(ride.id, params, user_id)
    result = await services.messages.resync(ride.id)
    await message.reply_text(_sync_summary(result, "updated"))


@guarded
async def handle_dupride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message

    original = services.repository.get(_require_ride_id(message))

    if not has_parameters(message.text) or set(parse_ride_params(message.text)[0]) == {"id"}:
        await _start_wizard(update, services, WizardMode.DUPLICATE, original=original)
        return

    params = _checked_params(message)
    ride = await services.repository.duplicate_from_parameters(original.id, params, update.effective_user.id)
    await services.messages.post_initial(
        ride, update.effective_chat.id, thread_id=_thread_id(message), is_for_creator=_is_creator_chat(update, ride)
    )
    await message.reply_text("Ride duplicated successfully!")


# ==============================================================================
# STATUS / DELETE
# ==============================================================================

@guarded
async def handle_cancelride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message
    ride = services.repository.cancel(_require_ride_id(message), update.effective_user.id)
    result = await services.messages.resync(ride.id)
    await message.reply_text(_sync_summary(result, "cancelled"))


@guarded
async def handle_resumeride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message
    ride = services.repository.resume(_require_ride_id(message), update.effective_user.id)
    result = await services.messages.resync(ride.id)
    await message.reply_text(_sync_summary(result, "resumed"))


@guarded
async def handle_deleteride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message

    ride = services.repository.get(_require_ride_id(message))
    services.repository.require_creator(ride, update.effective_user.id, "delete")

    keyboard = [[
        Button(BUTTONS["confirm_delete"], f"delete:confirm:{ride.id}"),
        Button(BUTTONS["cancel_delete"], f"delete:cancel:{ride.id}"),
    ]]
    await message.reply_text(
        "Are you sure you want to delete this ride? This action cannot be undone.",
        reply_markup=to_markup(keyboard),
    )


@guarded
async def handle_delete_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    query = update.callback_query
    _, decision, ride_id = query.data.split(":", 2)

    if decision == "cancel":
        await query.edit_message_text("Deletion cancelled.")
        await query.answer("Deletion cancelled")
        return

    ride = services.repository.get(ride_id)
    services.repository.require_creator(ride, query.from_user.id, "delete")

    deleted = await services.messages.delete_messages(ride)
    services.repository.delete(ride.id)
    logger.info(f"[Handlers] Ride {ride.id} deleted by {query.from_user.id}, removed {deleted} message(s)")

    await query.edit_message_text("Ride deleted successfully.")
    await query.answer("Ride deleted successfully")


# ==============================================================================
# LISTING / SHARING
# ==============================================================================

def _show_rides_page(services: BotServices, user_id: int, page: int):
    page_size = settings.RIDES_PAGE_SIZE
    page = max(page, 1)
    listing = services.repository.list_by_creator(user_id, skip=(page - 1) * page_size, limit=page_size)
    pages = total_pages(listing.total, page_size)
    text = services.formatter.render_rides_list(listing.rides, page, pages)
    keyboard = services.formatter.rides_list_keyboard(page, pages)
    return text, to_markup(keyboard) if keyboard else None


@guarded
async def handle_listrides(update: Update, context: ContextTypes.DEFAULT_TYPE):
    text, markup = _show_rides_page(get_services(context), update.effective_user.id, 1)
    await update.effective_message.reply_text(
        text, parse_mode=PARSE_MODE, reply_markup=markup, link_preview_options=NO_PREVIEW
    )


@guarded
async def handle_list_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    page = int(query.data.split(":", 1)[1])
    text, markup = _show_rides_page(get_services(context), query.from_user.id, page)
    await query.edit_message_text(text, parse_mode=PARSE_MODE, reply_markup=markup, link_preview_options=NO_PREVIEW)
    await query.answer()


@guarded
async def handle_shareride(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message
    chat_id = update.effective_chat.id
    thread_id = _thread_id(message)

    ride = services.repository.get(_require_ride_id(message))
    services.repository.require_creator(ride, update.effective_user.id, "repost")
    if ride.cancelled:
        raise ValidationError("Cannot share a cancelled ride.")
    if any(handle.same_place(chat_id, thread_id) for handle in ride.messages):
        raise ValidationError(f"This ride is already shared in this chat{' topic' if thread_id else ''}.")

    await services.messages.post_initial(
        ride, chat_id, thread_id=thread_id, is_for_creator=_is_creator_chat(update, ride)
    )


@guarded
async def handle_listparticipants(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    message = update.effective_message
    ride = services.repository.get(_require_ride_id(message))
    await message.reply_text(
        format_participants_list(ride), parse_mode=PARSE_MODE, link_preview_options=NO_PREVIEW
    )


def format_participants_list(ride: RideRecord) -> str:
    """Every answer for a ride, grouped by state, without truncating names."""
    participation = ride.participation
    total = len(participation.joined) + len(participation.thinking) + len(participation.skipped)

    def numbered(participants):
        return "\n".join(f"{i}. {format_participant(p)}" for i, p in enumerate(participants, 1))

    sections = [f'👥 <b>All Participants for "{escape(ride.title)}" ({total})</b>']
    sections.append(
        f"🚴 <b>Joined ({len(participation.joined)}):</b>\n"
        + (numbered(participation.joined) if participation.joined else "No one joined yet.")
    )
    if participation.thinking:
        sections.append(f"🤔 <b>Thinking ({len(participation.thinking)}):</b>\n{numbered(participation.thinking)}")
    if participation.skipped:
        sections.append(f"🙅 <b>Not interested ({len(participation.skipped)}):</b>\n{numbered(participation.skipped)}")
    return "\n\n".join(sections)


# ==============================================================================
# PARTICIPATION
# ==============================================================================

@guarded
async def handle_participation_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    query = update.callback_query
    action, ride_id = query.data.split(":", 1)
    state = PARTICIPATION_ACTIONS[action]

    ride = services.repository.get(ride_id)
    if ride.cancelled:
        await query.answer("This ride has been cancelled")
        return

    change = services.participation.set_participation(ride_id, participant_from_user(query.from_user), state)
    done, already = _PARTICIPATION_ANSWERS[state]
    if not change.changed:
        await query.answer(already)
        return

    await services.messages.resync(ride_id)
    await query.answer(done)


# ==============================================================================
# WIZARD
# ==============================================================================

@guarded
async def handle_wizard_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    services = get_services(context)
    query = update.callback_query
    parts = query.data.split(":", 2)
    action = parts[1]
    param = parts[2] if len(parts) > 2 else None

    answer = await services.wizard.handle_action(query.from_user.id, update.effective_chat.id, action, param)
    await query.answer(answer or None)


@guarded
async def handle_text(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    if message is None or update.effective_user is None:
        return
    await get_services(context).wizard.handle_input(
        update.effective_user.id, update.effective_chat.id, message.text, message.message_id
    )
