"""Process configuration for the counter queue service.

Values are read from environment variables once at import time.  Business
settings (rest intervals, work hours, routing) are not here: they live in
the store and are edited through the admin endpoints.
"""

from __future__ import annotations

import logging
import os

PROJECT_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_DB_FILENAME = os.path.join(PROJECT_DIR, "queue.db")

DB_PATH = os.getenv("DATABASE_PATH", DEFAULT_DB_FILENAME)
REDIS_URL = os.getenv("REDIS_URL")
ADMIN_PASS = os.getenv("ADMIN_PASS")
APP_TZ = os.getenv("APP_TZ", "Asia/Riyadh")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "8000"))

# A session is live only while its last heartbeat is younger than this.
HEARTBEAT_TIMEOUT_SECONDS = 90

BOARD_CACHE_SECONDS = 5
UPDATES_CHANNEL = "office:updates"
BOARD_CACHE_KEY = "office:board"


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
