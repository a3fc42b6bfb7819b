"""Create all tables. Run on app startup."""
import logging

from sqlalchemy.engine import Engine

from ridebot.db.base import Base
from ridebot.db.session import engine as default_engine
from ridebot.models import ride, participant, conversation_state  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(bind: Engine = None):
    bind = bind or default_engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"[DB] Tables ready: {', '.join(sorted(Base.metadata.tables))}")
