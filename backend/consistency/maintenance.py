"""
Reconciliation and audit toolkit.

There are no cross-collection transactions, so interrupted tag syncs can
leave pivots without a tagId, pivots pointing at deleted tags, duplicate
pivots and drifted usage counters. These jobs find and repair that
drift. All of them are idempotent and scoped to one owner.
"""

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Optional

from config import Settings
from consistency.counters import CounterAdjuster, ReadModifyWriteCounterAdjuster
from consistency.results import SyncReport
from sqlite_db import DuplicateKeyError, SQLiteDatabase

logger = logging.getLogger(__name__)

# Pivot ids listed in an audit for rows missing a tagId
AUDIT_SAMPLE_SIZE = 10


class TagMaintenance:

    def __init__(self, db: SQLiteDatabase, settings: Settings,
                 counter: Optional[CounterAdjuster] = None):
        self._tags = db[settings.tags_collection]
        self._pivots = db[settings.note_tags_collection]
        self.counter = counter or ReadModifyWriteCounterAdjuster(self._tags)

    async def _owner_tags(self, owner_id: str) -> Dict[str, dict]:
        return {t["_id"]: t async for t in self._tags.find({"ownerId": owner_id})}

    async def _owner_pivots(self, owner_id: str) -> List[dict]:
        return await self._pivots.find({"ownerId": owner_id}).sort("createdAt", 1).to_list()

    async def audit_tag_pivots(self, owner_id: str) -> Dict[str, Any]:
        """Read-only drift report for an owner's pivot rows."""
        tags = await self._owner_tags(owner_id)
        pivots = await self._owner_pivots(owner_id)

        missing_rows = [p for p in pivots if not p.get("tagId")]
        missing = len(missing_rows)
        dangling = sum(1 for p in pivots if p.get("tagId") and p["tagId"] not in tags)
        pairs = Counter((p["noteId"], p["tagId"]) for p in pivots if p.get("tagId"))
        duplicates = [
            {"noteId": note_id, "tagId": tag_id, "tag": tags.get(tag_id, {}).get("name"), "count": n}
            for (note_id, tag_id), n in pairs.items()
            if n > 1
        ]

        suggestions = []
        if missing:
            suggestions.append(
                f"{missing} pivot row(s) have no tagId. Run the pivot backfill to resolve them by tag name."
            )
        if dangling:
            suggestions.append(
                f"{dangling} pivot row(s) reference missing tags. Run the pivot backfill to re-resolve them."
            )
        if duplicates:
            suggestions.append(
                f"{len(duplicates)} (note, tag) pair(s) are duplicated. Run pivot dedupe, then reconcile tag usage."
            )
        if not suggestions:
            suggestions.append("No pivot drift detected.")

        return {
            "totalPivots": len(pivots),
            "missingTagIdCount": missing,
            "sampleMissing": [p["_id"] for p in missing_rows[:AUDIT_SAMPLE_SIZE]],
            "danglingTagIdCount": dangling,
            "duplicatePairs": duplicates,
            "suggestions": suggestions,
        }

    async def backfill_note_tag_pivots(self, owner_id: str) -> SyncReport:
        """Point null or dangling tagIds at the owner's Tag row of the same name."""
        report = SyncReport("backfill_note_tag_pivots")
        tags = await self._owner_tags(owner_id)
        by_name = {t["nameLower"]: t for t in tags.values() if t.get("nameLower")}
        patched = dropped = unresolved = 0

        for pivot in await self._owner_pivots(owner_id):
            tag_id = pivot.get("tagId")
            if tag_id and tag_id in tags:
                continue
            tag = by_name.get((pivot.get("tag") or "").lower())
            if tag is None:
                unresolved += 1
                continue
            try:
                await self._pivots.update_one({"_id": pivot["_id"]}, {"$set": {"tagId": tag["_id"]}})
                patched += 1
            except DuplicateKeyError:
                # The note already has a resolved row for this tag
                result = await report.attempt(
                    "drop_redundant_pivot", self._pivots.delete_one({"_id": pivot["_id"]}), target=pivot["_id"]
                )
                if result.ok:
                    dropped += 1
            except Exception as e:
                report.record("patch_pivot", str(e), target=pivot["_id"])

        report.summary.update({"patched": patched, "dropped": dropped, "unresolved": unresolved})
        logger.info(f"Pivot backfill for {owner_id}: {report.summary}")
        return report

    async def dedupe_tag_pivots(self, owner_id: str) -> SyncReport:
        """Keep the oldest pivot per (noteId, tagId) and delete the rest."""
        report = SyncReport("dedupe_tag_pivots")
        groups: Dict[tuple, List[dict]] = defaultdict(list)
        for pivot in await self._owner_pivots(owner_id):
            if pivot.get("tagId"):
                groups[(pivot["noteId"], pivot["tagId"])].append(pivot)

        removed = 0
        for rows in groups.values():
            for extra in rows[1:]:
                result = await report.attempt(
                    "delete_duplicate", self._pivots.delete_one({"_id": extra["_id"]}), target=extra["_id"]
                )
                if result.ok:
                    removed += result.value.deleted_count

        report.summary["removed"] = removed
        logger.info(f"Pivot dedupe for {owner_id}: removed {removed}")
        return report

    async def reconcile_tag_usage(self, owner_id: str) -> SyncReport:
        """Set every Tag's usageCount to the number of pivots referencing it."""
        report = SyncReport("reconcile_tag_usage")
        tags = await self._owner_tags(owner_id)
        truth = Counter(p["tagId"] for p in await self._owner_pivots(owner_id) if p.get("tagId"))

        corrected = []
        for tag_id, tag in tags.items():
            actual = truth.get(tag_id, 0)
            if (tag.get("usageCount") or 0) == actual:
                continue
            result = await report.attempt("set_usage", self.counter.set_count(tag_id, actual), target=tag_id)
            if result.ok:
                corrected.append({"tagId": tag_id, "name": tag.get("name"),
                                  "from": tag.get("usageCount") or 0, "to": actual})

        report.summary.update({"checked": len(tags), "corrected": corrected})
        logger.info(f"Tag usage reconcile for {owner_id}: {len(corrected)} of {len(tags)} corrected")
        return report

    async def repair_owner(self, owner_id: str) -> SyncReport:
        """Backfill, dedupe, then reconcile."""
        report = SyncReport("repair_owner")
        for step in (self.backfill_note_tag_pivots, self.dedupe_tag_pivots, self.reconcile_tag_usage):
            part = await step(owner_id)
            report.merge(part)
            report.summary[part.operation] = part.summary
        return report

    async def owners(self) -> List[str]:
        """Every owner with tags or pivots."""
        owners = set(await self._tags.distinct("ownerId"))
        owners.update(await self._pivots.distinct("ownerId"))
        return sorted(owners)
