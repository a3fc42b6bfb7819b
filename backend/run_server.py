"""Simple server runner that keeps uvicorn alive."""
import logging
import os
import signal
import sys

import uvicorn

logger = logging.getLogger("ridebot.server")


def handle_signal(sig, frame):
    logger.info(f"Received signal {sig}, shutting down gracefully...")
    sys.exit(0)


signal.signal(signal.SIGINT, handle_signal)
signal.signal(signal.SIGTERM, handle_signal)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting ride bot backend")
    uvicorn.run(
        "ridebot.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
