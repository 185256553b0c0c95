"""
Revision tracker and retention pruner.

Every effective note update appends an immutable revision numbered
max(existing) + 1. The revision stores the resulting title/content and,
when possible, a diff against the previous state. Pruning trims the
oldest revisions beyond the owner's plan retention and runs detached
from the write path; its failures are logged, never raised.

Diff format ("json-unified"):
    {"changes": {
        "title":   {"before": "...", "after": "..."},
        "content": {"unified": ["--- before", "+++ after", "@@ ...", ...]},
        "tagNames": {"before": [...], "after": [...]}}}
"""

import asyncio
import difflib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from config import Settings
from consistency.plans import PlanService
from sqlite_db import DuplicateKeyError, SQLiteDatabase

logger = logging.getLogger(__name__)

TRACKED_FIELDS = ("title", "content", "tagNames", "format")
DIFF_FORMAT = "json-unified"
REVISION_CAUSES = ("manual", "ai", "collab")

# Attempts at claiming the next revision number under concurrent writers
_NUMBERING_ATTEMPTS = 5


def has_significant_changes(prev: Dict[str, Any], current: Dict[str, Any],
                            fields: Iterable[str] = ("title", "content", "tagNames")) -> bool:
    """Autosave filter: is the change worth a revision?

    Content edits that change the trimmed length by 5 characters or fewer
    don't count, unless the content went from empty to non-empty or back.
    Any change to another field counts.
    """
    for f in fields:
        before, after = prev.get(f), current.get(f)
        if before == after:
            continue
        if f != "content":
            return True
        prev_text = str(before or "").strip()
        curr_text = str(after or "").strip()
        if abs(len(prev_text) - len(curr_text)) > 5:
            return True
        if bool(prev_text) != bool(curr_text):
            return True
    return False


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    changes = {}
    for f in TRACKED_FIELDS:
        if f not in after:
            continue
        old, new = before.get(f), after.get(f)
        if json.dumps(old, sort_keys=True, default=str) != json.dumps(new, sort_keys=True, default=str):
            changes[f] = {"before": old, "after": new}
    return changes


def build_diff(changes: Dict[str, Dict[str, Any]]) -> str:
    """Serialize changes, expressing content as unified-diff lines."""
    payload: Dict[str, Any] = {}
    for f, change in changes.items():
        if f == "content":
            lines = difflib.unified_diff(
                str(change["before"] or "").splitlines(),
                str(change["after"] or "").splitlines(),
                fromfile="before",
                tofile="after",
                lineterm="",
            )
            payload[f] = {"unified": list(lines)}
        else:
            payload[f] = change
    return json.dumps({"changes": payload}, default=str)


class RevisionTracker:

    def __init__(self, db: SQLiteDatabase, settings: Settings, plans: PlanService):
        self._revisions = db[settings.revisions_collection]
        self._plans = plans
        self._max_diff_chars = settings.max_diff_chars
        self._pending: Set[asyncio.Task] = set()

    async def _latest_number(self, note_id: str) -> int:
        latest = await self._revisions.find_one({"noteId": note_id}, sort=[("revisionNumber", -1)])
        return latest["revisionNumber"] if latest else 0

    def _diff_for(self, note_id: str, is_first: bool, after: Dict[str, Any],
                  changes: Dict[str, Dict[str, Any]]) -> Optional[str]:
        """Return the diff, or None when this revision must be a full snapshot."""
        if is_first or after.get("format") == "doodle":
            return None
        try:
            diff = build_diff(changes)
        except Exception as e:
            logger.warning(f"Diff failed for note {note_id}, storing full snapshot: {e}")
            return None
        if len(diff) > self._max_diff_chars:
            return None
        return diff

    async def record_revision(self, note_id: str, owner_id: Optional[str],
                              before: Dict[str, Any], after: Dict[str, Any],
                              cause: str = "manual") -> Optional[dict]:
        """Store a revision for before -> after.

        Returns:
            The stored revision, or None when no tracked field changed.
        """
        changes = changed_fields(before, after)
        if not changes:
            return None
        if cause not in REVISION_CAUSES:
            cause = "manual"

        for _ in range(_NUMBERING_ATTEMPTS):
            number = await self._latest_number(note_id) + 1
            diff = self._diff_for(note_id, number == 1, after, changes)
            doc = {
                "noteId": note_id,
                "revisionNumber": number,
                "ownerId": owner_id,
                "title": after.get("title", before.get("title")),
                "content": after.get("content", before.get("content")),
                "diff": diff,
                "diffFormat": DIFF_FORMAT if diff is not None else None,
                "fullSnapshot": diff is None,
                "cause": cause,
                "createdAt": datetime.now(timezone.utc),
            }
            try:
                result = await self._revisions.insert_one(doc)
            except DuplicateKeyError:
                logger.info(f"Revision {number} of note {note_id} taken concurrently, retrying")
                continue
            doc["_id"] = result.inserted_id
            return doc

        raise RuntimeError(f"Could not allocate a revision number for note {note_id}")

    async def prune_revisions(self, note_id: str, owner_id: Optional[str]) -> int:
        """Delete revisions older than the owner's retention count."""
        policy = await self._plans.get_policy(owner_id) if owner_id else None
        keep = policy.revision_retention_count if policy else 0
        docs = await (
            self._revisions.find({"noteId": note_id}, projection={"_id": 1, "revisionNumber": 1})
            .sort("revisionNumber", -1)
            .to_list()
        )
        stale = docs[keep:] if keep else []
        deleted = 0
        for doc in stale:
            try:
                result = await self._revisions.delete_one({"_id": doc["_id"]})
                deleted += result.deleted_count
            except Exception as e:
                logger.warning(f"Failed to delete revision {doc['_id']} of note {note_id}: {e}")
        if deleted:
            logger.info(f"Pruned {deleted} revision(s) of note {note_id} (keeping {keep})")
        return deleted

    async def _prune_quietly(self, note_id: str, owner_id: Optional[str]) -> None:
        try:
            await self.prune_revisions(note_id, owner_id)
        except Exception as e:
            logger.error(f"Revision prune failed for note {note_id}: {e}", exc_info=True)

    def schedule_prune(self, note_id: str, owner_id: Optional[str]) -> asyncio.Task:
        """Run prune_revisions detached from the caller."""
        task = asyncio.create_task(self._prune_quietly(note_id, owner_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for detached prunes (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def list_revisions(self, note_id: str, owner_id: Optional[str],
                             limit: Optional[int] = None) -> List[dict]:
        """Newest first. Defaults to the owner's retention count."""
        if not limit:
            policy = await self._plans.get_policy(owner_id) if owner_id else None
            limit = policy.revision_retention_count if policy else 0
        cursor = self._revisions.find({"noteId": note_id}).sort("revisionNumber", -1)
        if limit:
            cursor.limit(limit)
        return await cursor.to_list()

    async def get_revision(self, note_id: str, number: int) -> Optional[dict]:
        return await self._revisions.find_one({"noteId": note_id, "revisionNumber": number})

    async def delete_for_note(self, note_id: str) -> int:
        result = await self._revisions.delete_many({"noteId": note_id})
        return result.deleted_count
