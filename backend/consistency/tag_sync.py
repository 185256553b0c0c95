"""
Tag association synchronizer.

Converges three stores onto one target tag set for a note:
  - tags        one row per (ownerId, nameLower), carrying usageCount
  - note_tags   pivot rows (noteId, tagId, tag, ownerId)
  - notes       the denormalized Note.tagNames cache

None of this is transactional. Every sub-step runs through a SyncReport,
so one failing tag doesn't stop the others and the caller's note write
is never failed by it. Drift left behind by a crash is repaired by
consistency.maintenance.

Typical usage:
    sync = TagSynchronizer(db, settings)
    report = await sync.sync(note_id, owner_id, ["Q1", "q1", " Launch "])
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from config import Settings
from consistency.counters import CounterAdjuster, ReadModifyWriteCounterAdjuster
from consistency.results import SyncReport
from sqlite_db import DuplicateKeyError, SQLiteDatabase

logger = logging.getLogger(__name__)


def normalize_tag_names(names: Optional[Iterable[str]]) -> List[str]:
    """Trim, drop empties and de-duplicate case-insensitively.

    The first occurrence's casing and position win:
    ["Q1", "q1", "  Launch "] -> ["Q1", "Launch"].
    """
    seen = set()
    result = []
    for raw in names or []:
        if not isinstance(raw, str):
            continue
        name = raw.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        result.append(name)
    return result


def chunked(items: Sequence, size: int) -> Iterator[List]:
    """Split a list into store-sized $in batches."""
    size = max(1, size)
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class TagSynchronizer:
    """Reconciles a note's tag names against the Tag and NoteTag collections."""

    def __init__(self, db: SQLiteDatabase, settings: Settings,
                 counter: Optional[CounterAdjuster] = None):
        self._tags = db[settings.tags_collection]
        self._pivots = db[settings.note_tags_collection]
        self._notes = db[settings.notes_collection]
        self._chunk_size = settings.query_id_chunk_size
        self.counter = counter or ReadModifyWriteCounterAdjuster(self._tags)

    # ============================================================
    # Tag rows
    # ============================================================

    async def fetch_tags(self, owner_id: str, names_lower: Sequence[str]) -> Dict[str, dict]:
        """Batch-load existing Tag rows keyed by nameLower."""
        found: Dict[str, dict] = {}
        for batch in chunked(list(names_lower), self._chunk_size):
            cursor = self._tags.find({"ownerId": owner_id, "nameLower": {"$in": batch}})
            async for doc in cursor:
                found[doc["nameLower"]] = doc
        return found

    async def list_tags(self, owner_id: str) -> List[dict]:
        return await self._tags.find({"ownerId": owner_id}).sort("nameLower", 1).to_list()

    async def create_tag(self, owner_id: str, name: str) -> dict:
        """Create a Tag row, or return the row a concurrent caller just created."""
        now = datetime.now(timezone.utc)
        doc = {
            "ownerId": owner_id,
            "name": name,
            "nameLower": name.lower(),
            "usageCount": 0,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            result = await self._tags.insert_one(doc)
        except DuplicateKeyError:
            existing = await self._tags.find_one({"ownerId": owner_id, "nameLower": name.lower()})
            if existing is None:
                raise
            logger.info(f"Tag '{name}' created concurrently for {owner_id}; reusing {existing['_id']}")
            return existing
        doc["_id"] = result.inserted_id
        return doc

    async def resolve_tags(self, owner_id: str, names: List[str],
                           report: SyncReport) -> Dict[str, dict]:
        """Steps 2-3: load Tag rows for the target names, creating missing ones."""
        keys = [n.lower() for n in names]
        loaded = await report.attempt("fetch_tags", self.fetch_tags(owner_id, keys), target=owner_id)
        tags: Dict[str, dict] = loaded.value if loaded.ok else {}

        for name in names:
            if name.lower() in tags:
                continue
            created = await report.attempt("create_tag", self.create_tag(owner_id, name), target=name)
            if created.ok:
                tags[name.lower()] = created.value
        return tags

    # ============================================================
    # Pivot rows
    # ============================================================

    async def _add_pivot(self, note_id: str, owner_id: str, tag: dict, name: str) -> bool:
        """Insert a pivot row. False when the pair already exists."""
        try:
            await self._pivots.insert_one({
                "noteId": note_id,
                "tagId": tag["_id"],
                "tag": name,
                "ownerId": owner_id,
                "createdAt": datetime.now(timezone.utc),
            })
        except DuplicateKeyError:
            logger.info(f"Pivot ({note_id}, {tag['_id']}) already present")
            return False
        return True

    async def _heal_pivot(self, pivot: dict, tag: dict) -> str:
        """Fill a legacy pivot's null tagId. Returns 'patched' or 'dropped'."""
        try:
            await self._pivots.update_one({"_id": pivot["_id"]}, {"$set": {"tagId": tag["_id"]}})
        except DuplicateKeyError:
            # A resolved row for the same pair exists; the legacy row is redundant
            await self._pivots.delete_one({"_id": pivot["_id"]})
            return "dropped"
        return "patched"

    async def _remove_pivot(self, pivot: dict) -> int:
        result = await self._pivots.delete_one({"_id": pivot["_id"]})
        return result.deleted_count

    # ============================================================
    # Sync
    # ============================================================

    async def sync(self, note_id: str, owner_id: str,
                   tag_names: Optional[Iterable[str]]) -> SyncReport:
        """Converge tags, pivots and Note.tagNames onto tag_names.

        Re-running with the same names is a no-op after the first clean pass.

        Returns:
            SyncReport whose summary holds added/removed/healed counts and
            the normalized tagNames.
        """
        report = SyncReport("tag_sync")
        names = normalize_tag_names(tag_names)
        target = {n.lower(): n for n in names}
        report.summary.update({"added": 0, "removed": 0, "healed": 0, "tagNames": names})

        tags = await self.resolve_tags(owner_id, names, report) if names else {}

        loaded = await report.attempt(
            "load_pivots", self._pivots.find({"noteId": note_id}).to_list(), target=note_id
        )
        if not loaded.ok:
            # Can't diff without the current pivots; leave the rest to reconciliation
            return report

        existing: Dict[str, List[dict]] = {}
        for pivot in loaded.value:
            existing.setdefault((pivot.get("tag") or "").lower(), []).append(pivot)

        # Step 7: heal legacy rows whose name now resolves to a Tag
        for key, rows in existing.items():
            tag = tags.get(key)
            if tag is None:
                continue
            for pivot in rows:
                if pivot.get("tagId"):
                    continue
                healed = await report.attempt("heal_pivot", self._heal_pivot(pivot, tag), target=pivot["_id"])
                if healed.ok and healed.value == "patched":
                    pivot["tagId"] = tag["_id"]
                    report.summary["healed"] += 1
                    await report.attempt("increment_usage", self.counter.adjust(tag["_id"], 1), target=tag["_id"])

        # Step 5: new associations
        for key, name in target.items():
            if key in existing:
                continue
            tag = tags.get(key)
            if tag is None:
                report.record("add_pivot", "tag row unavailable", target=name)
                continue
            added = await report.attempt(
                "add_pivot", self._add_pivot(note_id, owner_id, tag, name), target=name
            )
            if added.ok and added.value:
                report.summary["added"] += 1
                await report.attempt("increment_usage", self.counter.adjust(tag["_id"], 1), target=tag["_id"])

        # Step 6: stale associations
        for key, rows in existing.items():
            if key in target:
                continue
            for pivot in rows:
                removed = await report.attempt("remove_pivot", self._remove_pivot(pivot), target=pivot["_id"])
                if not (removed.ok and removed.value):
                    continue
                report.summary["removed"] += 1
                if pivot.get("tagId"):
                    await report.attempt(
                        "decrement_usage", self.counter.adjust(pivot["tagId"], -1), target=pivot["tagId"]
                    )

        await report.attempt(
            "update_tag_names",
            self._notes.update_one({"_id": note_id}, {"$set": {"tagNames": names}}),
            target=note_id,
        )

        if not report.ok:
            logger.warning(f"Tag sync for note {note_id} finished with {len(report.failures)} failed step(s)")
        return report
