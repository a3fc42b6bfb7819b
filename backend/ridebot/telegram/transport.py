"""
Chat transport.

``Transport`` is the narrow interface the wizard and the message
synchronizer talk to. ``TelegramTransport`` implements it on top of
python-telegram-bot, bounds every call with a timeout and turns
``telegram.error`` exceptions into ``TransportFailure`` with a
``TransportFailureKind``.

Telegram does not give stable error codes, so the kind of a BadRequest is
still decided from its message text.
"""
import asyncio
import logging
from typing import List, Optional

from telegram import Bot, ChatMember, InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions, error

from ridebot.core.config import settings
from ridebot.core.exceptions import TransportFailure, TransportFailureKind
from ridebot.schemas.ride import MessageHandle
from ridebot.services.message_formatter import Button

logger = logging.getLogger(__name__)

PARSE_MODE = "HTML"
NO_PREVIEW = LinkPreviewOptions(is_disabled=True)

_MESSAGE_GONE = (
    "message to edit not found",
    "message to delete not found",
    "message_id_invalid",
    "message can't be edited",
    "message can't be deleted",
)
_CHAT_GONE = (
    "chat not found",
    "user is deactivated",
    "bot was kicked",
    "group chat was deactivated",
    "chat was deleted",
    "message thread not found",
)
_NO_RIGHTS = (
    "not enough rights",
    "have no rights",
    "need administrator rights",
)
_BLOCKED = (
    "bot was blocked by the user",
)


def classify_error(exc: Exception) -> TransportFailureKind:
    reason = str(exc).lower()
    if isinstance(exc, error.ChatMigrated):
        return TransportFailureKind.CHAT_GONE
    if isinstance(exc, (error.BadRequest, error.Forbidden)):
        if any(s in reason for s in _MESSAGE_GONE):
            return TransportFailureKind.MESSAGE_GONE
        if any(s in reason for s in _CHAT_GONE):
            return TransportFailureKind.CHAT_GONE
        if any(s in reason for s in _NO_RIGHTS):
            return TransportFailureKind.NO_RIGHTS
        if any(s in reason for s in _BLOCKED) or isinstance(exc, error.Forbidden):
            return TransportFailureKind.BLOCKED
    return TransportFailureKind.TRANSIENT


def to_markup(keyboard: Optional[List[List[Button]]]) -> Optional[InlineKeyboardMarkup]:
    if keyboard is None:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.label, callback_data=b.callback_data) for b in row] for row in keyboard]
    )


class Transport:
    """Send/edit/delete chat messages. Failures raise ``TransportFailure``."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        keyboard: Optional[List[List[Button]]] = None,
        thread_id: Optional[int] = None,
    ) -> MessageHandle:
        raise NotImplementedError

    async def edit_message(
        self,
        handle: MessageHandle,
        text: str,
        keyboard: Optional[List[List[Button]]] = None,
    ) -> None:
        raise NotImplementedError

    async def delete_message(self, handle: MessageHandle) -> None:
        raise NotImplementedError

    async def bot_is_admin(self, chat_id: int) -> bool:
        raise NotImplementedError


class TelegramTransport(Transport):
    def __init__(self, bot: Bot, timeout: float = None):
        self.bot = bot
        self.timeout = timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS

    async def _call(self, action: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Transport] {action} timed out after {self.timeout}s")
            raise TransportFailure(TransportFailureKind.TRANSIENT, f"{action} timed out")
        except error.TelegramError as e:
            kind = classify_error(e)
            logger.warning(f"[Transport] {action} failed ({kind.value}): {e}")
            raise TransportFailure(kind, str(e)) from e

    async def send_message(self, chat_id, text, keyboard=None, thread_id=None) -> MessageHandle:
        message = await self._call(
            f"send to {chat_id}",
            self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=PARSE_MODE,
                reply_markup=to_markup(keyboard) if keyboard else None,
                message_thread_id=thread_id,
                link_preview_options=NO_PREVIEW,
            ),
        )
        return MessageHandle(chat_id=chat_id, message_id=message.message_id, thread_id=thread_id)

    async def edit_message(self, handle, text, keyboard=None) -> None:
        try:
            await self._call(
                f"edit {handle.chat_id}/{handle.message_id}",
                self.bot.edit_message_text(
                    chat_id=handle.chat_id,
                    message_id=handle.message_id,
                    text=text,
                    parse_mode=PARSE_MODE,
                    reply_markup=to_markup(keyboard or []),
                    link_preview_options=NO_PREVIEW,
                ),
            )
        except TransportFailure as e:
            # Same text and buttons as before
            if "message is not modified" in e.reason.lower():
                return
            raise

    async def delete_message(self, handle) -> None:
        await self._call(
            f"delete {handle.chat_id}/{handle.message_id}",
            self.bot.delete_message(chat_id=handle.chat_id, message_id=handle.message_id),
        )

    async def bot_is_admin(self, chat_id: int) -> bool:
        member = await self._call(
            f"get_chat_member {chat_id}",
            self.bot.get_chat_member(chat_id=chat_id, user_id=self.bot.id),
        )
        return member.status in (ChatMember.ADMINISTRATOR, ChatMember.OWNER)
