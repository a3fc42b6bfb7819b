import asyncio
import logging
import threading
from typing import Optional

from telegram import error
from telegram.ext import Application, CallbackQueryHandler, CommandHandler, MessageHandler, filters

from ridebot.agent.conversation_store import ConversationStore
from ridebot.agent.ride_wizard import RideWizard
from ridebot.core.config import settings
from ridebot.services.message_formatter import MessageFormatter
from ridebot.services.participation_store import ParticipationStore
from ridebot.services.ride_messages import RideMessagesService
from ridebot.services.ride_repository import RideRepository
from ridebot.services.route_parser import RouteParser
from ridebot.telegram import handlers
from ridebot.telegram.transport import TelegramTransport

logger = logging.getLogger(__name__)

_bot_app: Optional[Application] = None
_loop: Optional[asyncio.AbstractEventLoop] = None

COMMANDS = {
    "start": handlers.handle_start,
    "help": handlers.handle_help,
    "newride": handlers.handle_newride,
    "updateride": handlers.handle_updateride,
    "cancelride": handlers.handle_cancelride,
    "resumeride": handlers.handle_resumeride,
    "deleteride": handlers.handle_deleteride,
    "dupride": handlers.handle_dupride,
    "listrides": handlers.handle_listrides,
    "shareride": handlers.handle_shareride,
    "listparticipants": handlers.handle_listparticipants,
}


def build_services(app: Application) -> handlers.BotServices:
    transport = TelegramTransport(app.bot)
    route_parser = RouteParser()
    formatter = MessageFormatter()
    repository = RideRepository(route_parser=route_parser)
    messages = RideMessagesService(repository, transport, formatter=formatter)
    wizard = RideWizard(ConversationStore(), repository, messages, transport, route_parser=route_parser)
    return handlers.BotServices(
        repository=repository,
        participation=ParticipationStore(),
        messages=messages,
        wizard=wizard,
        formatter=formatter,
    )


def build_application(token: str) -> Application:
    app = Application.builder().token(token).build()
    app.bot_data["services"] = build_services(app)

    for name, callback in COMMANDS.items():
        app.add_handler(CommandHandler(name, callback))
    app.add_handler(CallbackQueryHandler(handlers.handle_participation_callback, pattern=r"^(join|thinking|pass):\w+$"))
    app.add_handler(CallbackQueryHandler(handlers.handle_wizard_callback, pattern=r"^wizard:"))
    app.add_handler(CallbackQueryHandler(handlers.handle_list_callback, pattern=r"^list:\d+$"))
    app.add_handler(CallbackQueryHandler(handlers.handle_delete_callback, pattern=r"^delete:(confirm|cancel):\w+$"))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handlers.handle_text))
    return app


async def _start_polling_with_retry(app: Application, max_retries: int = 3, initial_backoff: int = 2) -> bool:
    for attempt in range(max_retries):
        try:
            logger.info(f"[Telegram] Starting polling (attempt {attempt + 1}/{max_retries})...")
            await app.updater.start_polling(drop_pending_updates=True)
            logger.info("[Telegram] Polling started")
            return True
        except error.Conflict as e:
            if attempt < max_retries - 1:
                backoff = initial_backoff * (2 ** attempt)
                logger.warning(f"[Telegram] Conflict detected: {e}. Retrying in {backoff}s")
                await asyncio.sleep(backoff)
            else:
                logger.error(f"[Telegram] Failed after {max_retries} retries, bot disabled: {e}")
                return False
        except error.TelegramError as e:
            logger.error(f"[Telegram] Could not start polling: {e}")
            return False
    return False


def _run_bot():
    global _bot_app, _loop
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    _loop = loop

    try:
        _bot_app = build_application(settings.TELEGRAM_BOT_TOKEN)
        loop.run_until_complete(_bot_app.initialize())
        loop.run_until_complete(_bot_app.start())
        if loop.run_until_complete(_start_polling_with_retry(_bot_app)):
            loop.run_forever()
    except Exception as e:
        logger.error(f"[Telegram] Bot error: {e}", exc_info=True)
    finally:
        if _bot_app is not None:
            try:
                if _bot_app.updater.running:
                    loop.run_until_complete(_bot_app.updater.stop())
                if _bot_app.running:
                    loop.run_until_complete(_bot_app.stop())
                loop.run_until_complete(_bot_app.shutdown())
            except Exception as e:
                logger.warning(f"[Telegram] Error during shutdown: {e}")
        loop.close()
        _loop = None


def start_bot_background():
    if not settings.TELEGRAM_BOT_TOKEN:
        return
    t = threading.Thread(target=_run_bot, name="telegram-bot", daemon=True)
    t.start()


def stop_bot_background():
    """Stop polling. Called on FastAPI shutdown."""
    if _loop is not None and _loop.is_running():
        _loop.call_soon_threadsafe(_loop.stop)
