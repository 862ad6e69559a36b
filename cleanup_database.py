"""Delete every asset and location document, in batches of 20."""

import logging
import sys
from typing import Iterable, List

from pymongo.database import Database

import database
from logging_config import setup_logging
from repository import Repository

logger = logging.getLogger(__name__)

BATCH_SIZE = 20
COLLECTIONS = (database.ASSETS, database.LOCATIONS)


def _chunks(ids: List[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


def cleanup_collection(db: Database, name: str, batch_size: int = BATCH_SIZE) -> int:
    repo = Repository(db, name)
    ids = [str(doc["_id"]) for doc in repo.collection.find({}, {"_id": 1})]
    print(f"Found {len(ids)} {name} to delete")

    deleted = 0
    for chunk in _chunks(ids, batch_size):
        deleted += repo.delete_batch(chunk)
        print(f"   Deleted {deleted} {name}")
    return deleted


def cleanup_database(db: Database) -> dict:
    print("Starting database cleanup...")
    totals = {name: cleanup_collection(db, name) for name in COLLECTIONS}
    print("Cleanup complete: " + ", ".join(f"{count} {name}" for name, count in totals.items()))
    return totals


if __name__ == "__main__":
    setup_logging(app_name="cleanup")
    db = database.connect()
    if db is None:
        logger.error("DATABASE_URL is not set")
        sys.exit(1)
    try:
        cleanup_database(db)
    finally:
        database.close()
