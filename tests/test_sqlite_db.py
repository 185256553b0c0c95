"""Tests for the SQLite document store: unique indexes and query translation."""

from datetime import datetime, timedelta, timezone

import pytest

from sqlite_db import DuplicateKeyError


class TestUniqueIndexes:

    @pytest.mark.asyncio
    async def test_duplicate_tag_key_rejected(self, db):
        await db.tags.insert_one({"ownerId": "alice", "nameLower": "q1", "name": "Q1"})
        with pytest.raises(DuplicateKeyError):
            await db.tags.insert_one({"ownerId": "alice", "nameLower": "q1", "name": "q1"})

    @pytest.mark.asyncio
    async def test_same_name_different_owner_allowed(self, db):
        await db.tags.insert_one({"ownerId": "alice", "nameLower": "q1"})
        await db.tags.insert_one({"ownerId": "bob", "nameLower": "q1"})
        assert await db.tags.count_documents({"nameLower": "q1"}) == 2

    @pytest.mark.asyncio
    async def test_null_tag_ids_never_conflict(self, db):
        await db.note_tags.insert_one({"noteId": "n1", "tagId": None, "tag": "a"})
        await db.note_tags.insert_one({"noteId": "n1", "tagId": None, "tag": "b"})
        assert await db.note_tags.count_documents({"noteId": "n1"}) == 2

    @pytest.mark.asyncio
    async def test_update_into_existing_key_rejected(self, db):
        await db.note_tags.insert_one({"noteId": "n1", "tagId": "t1", "tag": "a"})
        legacy = await db.note_tags.insert_one({"noteId": "n1", "tagId": None, "tag": "a"})
        with pytest.raises(DuplicateKeyError):
            await db.note_tags.update_one({"_id": legacy.inserted_id}, {"$set": {"tagId": "t1"}})
        # The failed write left the row untouched
        row = await db.note_tags.find_one({"_id": legacy.inserted_id})
        assert row["tagId"] is None


class TestQueries:

    @pytest.mark.asyncio
    async def test_id_range_and_sort(self, db):
        for i in range(5):
            await db.items.insert_one({"_id": f"id{i}", "n": i})
        docs = await db.items.find({"_id": {"$lt": "id3"}}).sort("_id", -1).to_list()
        assert [d["_id"] for d in docs] == ["id2", "id1", "id0"]

    @pytest.mark.asyncio
    async def test_compound_sort_with_id_tiebreak(self, db):
        ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await db.items.insert_one({"_id": "a", "createdAt": ts})
        await db.items.insert_one({"_id": "b", "createdAt": ts})
        await db.items.insert_one({"_id": "c", "createdAt": ts - timedelta(seconds=1)})
        docs = await db.items.find({}).sort([("createdAt", -1), ("_id", -1)]).to_list()
        assert [d["_id"] for d in docs] == ["b", "a", "c"]

    @pytest.mark.asyncio
    async def test_dates_round_trip_as_datetime(self, db):
        ts = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
        result = await db.items.insert_one({"createdAt": ts})
        doc = await db.items.find_one({"_id": result.inserted_id})
        assert doc["createdAt"] == ts

    @pytest.mark.asyncio
    async def test_empty_in_matches_nothing(self, db):
        await db.items.insert_one({"k": 1})
        assert await db.items.find({"k": {"$in": []}}).to_list() == []

    @pytest.mark.asyncio
    async def test_or_and_null_match(self, db):
        await db.items.insert_many([{"k": 1}, {"k": 2}, {"k": 3}, {"j": 1}])
        assert await db.items.count_documents({"k": None}) == 1
        assert await db.items.count_documents({"$or": [{"k": 1}, {"j": 1}]}) == 2

    @pytest.mark.asyncio
    async def test_distinct_skips_nulls(self, db):
        await db.items.insert_many([{"o": "a"}, {"o": "b"}, {"o": "a"}, {"x": 1}])
        assert sorted(await db.items.distinct("o")) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_many_counts(self, db):
        await db.items.insert_many([{"g": 1}, {"g": 1}, {"g": 2}])
        result = await db.items.delete_many({"g": 1})
        assert result.deleted_count == 2
        assert await db.items.count_documents({}) == 1

    @pytest.mark.asyncio
    async def test_projection_keeps_included_fields(self, db):
        await db.items.insert_one({"_id": "p1", "a": 1, "b": 2})
        assert await db.items.find_one({"_id": "p1"}, projection={"a": 1}) == {"_id": "p1", "a": 1}

    @pytest.mark.asyncio
    async def test_only_set_updates_are_supported(self, db):
        await db.items.insert_one({"_id": "u1", "n": 1})
        with pytest.raises(ValueError):
            await db.items.update_one({"_id": "u1"}, {"$inc": {"n": 1}})
        result = await db.items.update_one({"_id": "missing"}, {"$set": {"n": 2}})
        assert result.matched_count == 0
        assert await db.items.count_documents({}) == 1
