"""
MongoDB connection handling.

The client is opened by the application entry point (``connect``) and closed on
shutdown (``close``). Routes receive the database through the ``get_db``
dependency so tests can substitute an in-memory double.
"""

import logging
from typing import Optional

from pymongo import MongoClient
from pymongo.database import Database

from config import Settings, settings
from errors import StoreError

logger = logging.getLogger(__name__)

# Collection names
ASSETS = "assets"
USERS = "users"
LOCATIONS = "locations"
ASSIGNMENTS = "assignments"
REQUESTS = "requests"
MAINTENANCE = "maintenance_records"
SESSIONS = "sessions"

_client: Optional[MongoClient] = None
_db: Optional[Database] = None


def connect(config: Optional[Settings] = None) -> Optional[Database]:
    global _client, _db
    config = config or settings
    if _db is not None:
        return _db
    if not config.database_url:
        logger.warning("DATABASE_URL is not set; database features are unavailable")
        return None
    _client = MongoClient(config.database_url, serverSelectionTimeoutMS=config.mongo_timeout_ms)
    _db = _client[config.database_name]
    logger.info(f"Connected to database '{config.database_name}' ({config.app_env})")
    return _db


def close():
    global _client, _db
    if _client is not None:
        _client.close()
        logger.info("Database connection closed")
    _client = None
    _db = None


def get_db() -> Database:
    db = _db if _db is not None else connect()
    if db is None:
        raise StoreError("Database is not configured")
    return db
