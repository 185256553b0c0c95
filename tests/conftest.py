"""
Shared pytest fixtures for the consistency layer tests.

Every test gets its own SQLite document store under tmp_path with the
production indexes, so unique-key behaviour is real, not mocked.
"""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from config import Settings
from consistency.plans import PlanPolicy, PlanService
from database import ensure_indexes
from sqlite_db import SQLiteDatabase


class FakePlanService(PlanService):
    """Fixed policy for every owner; records who asked."""

    def __init__(self, attachment_size_mb: int = 1, revision_retention_count: int = 3):
        self.policy = PlanPolicy("test", attachment_size_mb, revision_retention_count)
        self.calls = []

    async def get_policy(self, owner_id: str) -> PlanPolicy:
        self.calls.append(owner_id)
        return self.policy


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_path": str(tmp_path / "app.db"),
        "attachments_bucket_dir": str(tmp_path / "bucket"),
        "attachments_collection": "attachments",
        "attachment_url_signing_secret": "test-signing-secret",
        "jwt_secret_key": "test-jwt-secret",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def plans() -> FakePlanService:
    return FakePlanService()


@pytest_asyncio.fixture
async def db(settings):
    database = SQLiteDatabase(settings.database_path)
    await database.connect()
    await ensure_indexes(database, settings)
    yield database
    await database.close()


async def insert_note(db, owner_id: str = "alice", **fields) -> str:
    """Insert a raw note document and return its id."""
    now = datetime.now(timezone.utc)
    doc = {
        "ownerId": owner_id,
        "title": "Untitled",
        "content": "",
        "format": "text",
        "tagNames": [],
        "attachments": [],
        "isPublic": False,
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
    }
    doc.update(fields)
    result = await db.notes.insert_one(doc)
    return result.inserted_id
