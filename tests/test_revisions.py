"""Tests for revision numbering, snapshots, autosave filtering and pruning."""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from consistency.revisions import (
    RevisionTracker,
    build_diff,
    changed_fields,
    has_significant_changes,
)

from conftest import FakePlanService, make_settings


def _state(title="T", content="", tags=None, fmt="text"):
    return {"title": title, "content": content, "tagNames": tags or [], "format": fmt}


@pytest.fixture
def tracker(db, settings, plans):
    return RevisionTracker(db, settings, plans)


class TestSignificance:

    def test_small_content_edit_is_not_significant(self):
        assert not has_significant_changes(_state(content="hello"), _state(content="hello!!"))

    def test_large_content_edit_is_significant(self):
        assert has_significant_changes(_state(content="hello"), _state(content="hello world"))

    def test_empty_transition_is_significant(self):
        assert has_significant_changes(_state(content=""), _state(content="a"))
        assert has_significant_changes(_state(content="a"), _state(content="  "))

    def test_title_or_tags_change_is_significant(self):
        assert has_significant_changes(_state(title="a"), _state(title="b"))
        assert has_significant_changes(_state(tags=["x"]), _state(tags=["y"]))

    def test_identical_is_not_significant(self):
        assert not has_significant_changes(_state(), _state())


class TestDiff:

    def test_changed_fields_only_tracks_known_fields(self):
        changes = changed_fields(_state(title="a"), {"title": "b", "isPublic": True})
        assert changes == {"title": {"before": "a", "after": "b"}}

    def test_content_becomes_unified_lines(self):
        diff = json.loads(build_diff({"content": {"before": "one\ntwo", "after": "one\nthree"}}))
        lines = diff["changes"]["content"]["unified"]
        assert "-two" in lines
        assert "+three" in lines


class TestRecord:

    @pytest.mark.asyncio
    async def test_numbers_increase_and_first_is_snapshot(self, tracker):
        states = [_state(content=f"v{i}") for i in range(4)]
        revisions = []
        for before, after in zip(states, states[1:]):
            revisions.append(await tracker.record_revision("n1", "alice", before, after))

        assert [r["revisionNumber"] for r in revisions] == [1, 2, 3]
        assert revisions[0]["fullSnapshot"] is True
        assert revisions[0]["diff"] is None
        assert revisions[1]["fullSnapshot"] is False
        assert revisions[1]["diffFormat"] == "json-unified"
        assert revisions[2]["content"] == "v3"

    @pytest.mark.asyncio
    async def test_noop_update_records_nothing(self, tracker, db):
        assert await tracker.record_revision("n1", "alice", _state(), _state()) is None
        assert await db.note_revisions.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_doodle_always_full_snapshot(self, tracker):
        await tracker.record_revision("n1", "alice", _state(content="a"), _state(content="b"))
        doodle = await tracker.record_revision(
            "n1", "alice", _state(content="b"), _state(content="[strokes]", fmt="doodle")
        )
        assert doodle["fullSnapshot"] is True
        assert doodle["content"] == "[strokes]"

    @pytest.mark.asyncio
    async def test_oversized_diff_falls_back_to_snapshot(self, db, tmp_path, plans):
        tracker = RevisionTracker(db, make_settings(tmp_path, max_diff_chars=200), plans)
        await tracker.record_revision("n1", "alice", _state(content="a"), _state(content="b"))

        big = "\n".join(f"line {i}" for i in range(100))
        revision = await tracker.record_revision("n1", "alice", _state(content="b"), _state(content=big))

        assert revision["fullSnapshot"] is True
        assert revision["content"] == big

    @pytest.mark.asyncio
    async def test_diff_failure_falls_back_to_snapshot(self, tracker):
        await tracker.record_revision("n1", "alice", _state(content="a"), _state(content="b"))
        with patch("consistency.revisions.build_diff", side_effect=TypeError("bad content")):
            revision = await tracker.record_revision("n1", "alice", _state(content="b"), _state(content="c"))
        assert revision["fullSnapshot"] is True

    @pytest.mark.asyncio
    async def test_unknown_cause_is_manual(self, tracker):
        revision = await tracker.record_revision("n1", "alice", _state(title="a"), _state(title="b"), cause="robot")
        assert revision["cause"] == "manual"

    @pytest.mark.asyncio
    async def test_concurrent_writers_get_distinct_numbers(self, tracker, db):
        results = await asyncio.gather(*[
            tracker.record_revision("n1", "alice", _state(content="a"), _state(content=f"b{i}"))
            for i in range(4)
        ])
        assert sorted(r["revisionNumber"] for r in results) == [1, 2, 3, 4]
        assert await db.note_revisions.count_documents({"noteId": "n1"}) == 4

    @pytest.mark.asyncio
    async def test_numbering_gives_up_after_retries(self, tracker):
        tracker._latest_number = AsyncMock(return_value=0)
        await tracker.record_revision("n1", "alice", _state(title="a"), _state(title="b"))

        with pytest.raises(RuntimeError):
            await tracker.record_revision("n1", "alice", _state(title="b"), _state(title="c"))


class TestPrune:

    @pytest.mark.asyncio
    async def test_keeps_newest_retention_count(self, tracker, db):
        for i in range(6):
            await tracker.record_revision("n1", "alice", _state(content=str(i)), _state(content=str(i + 1)))

        deleted = await tracker.prune_revisions("n1", "alice")

        assert deleted == 3
        kept = await db.note_revisions.find({"noteId": "n1"}).sort("revisionNumber", 1).to_list()
        assert [r["revisionNumber"] for r in kept] == [4, 5, 6]

    @pytest.mark.asyncio
    async def test_numbering_continues_after_prune(self, tracker):
        for i in range(5):
            await tracker.record_revision("n1", "alice", _state(content=str(i)), _state(content=str(i + 1)))
        await tracker.prune_revisions("n1", "alice")

        revision = await tracker.record_revision("n1", "alice", _state(content="5"), _state(content="6"))
        assert revision["revisionNumber"] == 6

    @pytest.mark.asyncio
    async def test_scheduled_prune_failure_is_swallowed(self, db, settings):
        plans = FakePlanService()
        plans.get_policy = AsyncMock(side_effect=RuntimeError("billing down"))
        tracker = RevisionTracker(db, settings, plans)
        await tracker.record_revision("n1", "alice", _state(title="a"), _state(title="b"))

        tracker.schedule_prune("n1", "alice")
        await tracker.drain()

        assert await db.note_revisions.count_documents({"noteId": "n1"}) == 1

    @pytest.mark.asyncio
    async def test_scheduled_prune_runs_detached(self, tracker, db):
        for i in range(5):
            await tracker.record_revision("n1", "alice", _state(content=str(i)), _state(content=str(i + 1)))

        tracker.schedule_prune("n1", "alice")
        await tracker.drain()

        assert await db.note_revisions.count_documents({"noteId": "n1"}) == 3

    @pytest.mark.asyncio
    async def test_list_defaults_to_retention(self, tracker):
        for i in range(5):
            await tracker.record_revision("n1", "alice", _state(content=str(i)), _state(content=str(i + 1)))

        listed = await tracker.list_revisions("n1", "alice")
        assert [r["revisionNumber"] for r in listed] == [5, 4, 3]
        assert len(await tracker.list_revisions("n1", "alice", limit=10)) == 5
