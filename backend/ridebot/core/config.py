"""Application configuration.

Environment variables override all defaults. A ``backend/.env`` file is
loaded for local development.
"""

import os
import warnings
from pathlib import Path

from dotenv import load_dotenv

_BACKEND_DIR = Path(__file__).resolve().parents[2]
load_dotenv(dotenv_path=_BACKEND_DIR / ".env", override=False)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./ridebot.db")

    # Telegram Bot (Must be set via .env, never in code)
    TELEGRAM_BOT_TOKEN: str = os.getenv("TELEGRAM_BOT_TOKEN", "")

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    DEBUG: bool = ENVIRONMENT == "development"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    if not TELEGRAM_BOT_TOKEN:
        if ENVIRONMENT == "production":
            raise ValueError("⛔ TELEGRAM_BOT_TOKEN must be set in production environment.")
        warnings.warn(
            "⚠️  TELEGRAM_BOT_TOKEN not set. The bot will not start; only the HTTP API is served.",
            RuntimeWarning,
        )

    # Rides are entered and displayed in this timezone
    DEFAULT_TIMEZONE: str = os.getenv("DEFAULT_TIMEZONE", "UTC")

    # Wizard
    WIZARD_ONLY_IN_PRIVATE_CHATS: bool = _env_bool("WIZARD_ONLY_IN_PRIVATE_CHATS", False)
    WIZARD_SESSION_TTL_SECONDS: int = int(os.getenv("WIZARD_SESSION_TTL_SECONDS", "3600"))

    # Upper bound for every Telegram call and route page fetch
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = float(os.getenv("EXTERNAL_CALL_TIMEOUT_SECONDS", "10"))

    # Telegram hard limit
    MAX_MESSAGE_LENGTH: int = int(os.getenv("MAX_MESSAGE_LENGTH", "4096"))

    RIDES_PAGE_SIZE: int = int(os.getenv("RIDES_PAGE_SIZE", "5"))


settings = Settings()
