"""
Database connection module — SQLite backend.

Provides the connect/disconnect lifecycle and index setup. There is no
module-level client: the application owns one SQLiteDatabase on
app.state.db and routers receive it through the get_database()
dependency, so tests can hand in their own instance.

Typical usage:
    db = await connect_db(settings.database_path)
    await ensure_indexes(db, settings)
    app.state.db = db
"""

import logging

from fastapi import Request

from config import Settings
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)


async def connect_db(db_path: str) -> SQLiteDatabase:
    """Open the SQLite document store.

    Called once during application startup (main.py lifespan).
    Creates the database file if it doesn't exist.
    """
    logger.info(f"Connecting to SQLite database: {db_path}")
    db = SQLiteDatabase(db_path)
    await db.connect()
    return db


async def close_db(db: SQLiteDatabase) -> None:
    """Close the database connection gracefully.

    Called during application shutdown.
    """
    await db.close()
    logger.info("Database connection closed")


async def ensure_indexes(db: SQLiteDatabase, settings: Settings) -> None:
    """Create the unique and lookup indexes the consistency layer relies on.

    Safe to call on every startup (CREATE INDEX IF NOT EXISTS).
    """
    tags = db[settings.tags_collection]
    pivots = db[settings.note_tags_collection]
    revisions = db[settings.revisions_collection]
    notes = db[settings.notes_collection]

    # At most one Tag per (ownerId, nameLower)
    await tags.create_index([("ownerId", 1), ("nameLower", 1)], unique=True)
    # At most one pivot per (noteId, tagId); legacy null tagId rows never collide
    await pivots.create_index([("noteId", 1), ("tagId", 1)], unique=True)
    await revisions.create_index([("noteId", 1), ("revisionNumber", 1)], unique=True)

    await pivots.create_index("ownerId")
    await pivots.create_index("noteId")
    await notes.create_index([("ownerId", 1), ("createdAt", -1)])
    await db[settings.collaborators_collection].create_index([("noteId", 1), ("userId", 1)])

    if settings.attachments_collection:
        await db[settings.attachments_collection].create_index("noteId")

    logger.info("Document store indexes ensured")


def get_database(request: Request) -> SQLiteDatabase:
    """FastAPI dependency returning the app's database.

    Raises:
        RuntimeError: If the lifespan hasn't connected the database yet.
    """
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise RuntimeError("Database not initialized. Call connect_db() first.")
    return db
