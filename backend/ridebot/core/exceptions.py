"""
Error taxonomy for the ride bot.

Domain errors carry a short, user-facing message. Handlers reply with
``str(exc)``; anything that is not a ``RideBotError`` is logged with a
traceback and answered with a generic message.

The HTTP layer never exposes internal details (see ``BusinessError``).
"""
import logging
from enum import Enum

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class RideBotError(Exception):
    """Base class for errors that are safe to show to the user."""

    default_message = "Something went wrong."

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(RideBotError):
    default_message = "❌ Invalid value."


class RideNotFoundError(RideBotError):
    default_message = "Ride not found."

    def __init__(self, ride_id: str = "", message: str = ""):
        self.ride_id = ride_id
        super().__init__(message or (f"Ride #{ride_id} not found." if ride_id else ""))


class PermissionDeniedError(RideBotError):
    default_message = "Only the ride creator can do this."


class SessionExpiredError(RideBotError):
    default_message = "Wizard session expired"


class SessionActiveError(RideBotError):
    default_message = "Please complete or cancel the current ride creation wizard before starting a new one."


class TransportFailureKind(str, Enum):
    TRANSIENT = "transient"
    MESSAGE_GONE = "message_gone"
    CHAT_GONE = "chat_gone"
    BLOCKED = "blocked"
    NO_RIGHTS = "no_rights"

    @property
    def is_permanent(self) -> bool:
        return self is not TransportFailureKind.TRANSIENT


class TransportFailure(RideBotError):
    """A send/edit/delete call failed. ``kind`` decides whether a handle is pruned."""

    default_message = "Telegram request failed."

    def __init__(self, kind: TransportFailureKind, reason: str = ""):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Telegram request failed: {reason}" if reason else "")

    @property
    def is_permanent(self) -> bool:
        return self.kind.is_permanent


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def not_found(resource: str = "Resource", reason: str = "") -> HTTPException:
        """Generic 404 that doesn't confirm resource existence."""
        if reason:
            logger.warning(f"Not found: {resource} - {reason}")

        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Resource not found",
        )

    @staticmethod
    def server_error(original_error: Exception = None) -> HTTPException:
        """
        Generic 500 - logs actual error internally, hides from user.
        """
        if original_error:
            logger.error(
                f"Internal server error: {type(original_error).__name__}: {str(original_error)}",
                exc_info=True
            )
        else:
            logger.error("Internal server error occurred", exc_info=True)

        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An internal error occurred. Please try again later.",
        )
