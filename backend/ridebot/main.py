"""
Ride bot backend.

- Telegram bot: ride creation (wizard or parameters), sharing, participation buttons
- SQLAlchemy DB: rides, participation rows, wizard sessions
- FastAPI: process host with /health and a read-only ride lookup
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ridebot.api.routes import rides
from ridebot.core.config import settings
from ridebot.db.init_db import init_db
from ridebot.telegram.bot import start_bot_background, stop_bot_background

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create tables, start Telegram polling (if a token is set).
    Shutdown: stop the bot loop.
    """
    logger.info("[Startup] Initializing database...")
    init_db()

    if settings.TELEGRAM_BOT_TOKEN:
        logger.info("[Startup] Starting Telegram bot...")
        start_bot_background()
    else:
        logger.warning("[Startup] Telegram bot disabled (no token)")

    yield

    if settings.TELEGRAM_BOT_TOKEN:
        stop_bot_background()


app = FastAPI(
    title="Ride Bot API",
    description="Telegram ride scheduling bot.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(rides.router, prefix="/rides", tags=["rides"])


@app.get("/health")
def health():
    return {"status": "ok", "bot": "enabled" if settings.TELEGRAM_BOT_TOKEN else "disabled"}
