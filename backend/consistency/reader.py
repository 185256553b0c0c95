"""
Paginated hydration reader.

Pages notes newest-first with a keyset cursor over (createdAt, _id), then
loads the tag names for the whole page with batched pivot queries (one
per query_id_chunk_size note ids) instead of one query per note.

hasMore is true iff the page came back full, so an exactly-full last page
reports hasMore and the following page is simply empty.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import Settings
from consistency.errors import InvalidCursorError
from consistency.results import SyncReport
from consistency.tag_sync import chunked
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)


@dataclass
class NotePage:
    notes: List[dict]
    next_cursor: Optional[str] = None
    has_more: bool = False
    report: SyncReport = field(default_factory=lambda: SyncReport("list_notes"))


def encode_cursor(note: dict) -> str:
    created = note.get("createdAt")
    if isinstance(created, datetime):
        created = created.isoformat()
    raw = json.dumps({"c": created, "i": note["_id"]}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Dict[str, Any]:
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidCursorError(f"Invalid cursor: {e}") from e
    if not isinstance(data, dict) or "c" not in data or not data.get("i"):
        raise InvalidCursorError("Invalid cursor")
    if data["c"] is not None and not isinstance(data["c"], str):
        raise InvalidCursorError("Invalid cursor")
    return data


def _after(position: Dict[str, Any]) -> Dict[str, Any]:
    """Filter for notes that sort after the cursor position.

    Notes without a createdAt sort last in descending order, ordered by _id.
    """
    if position["c"] is None:
        return {"createdAt": None, "_id": {"$lt": position["i"]}}
    return {"$or": [
        {"createdAt": {"$lt": position["c"]}},
        {"createdAt": position["c"], "_id": {"$lt": position["i"]}},
        {"createdAt": None},
    ]}


class NoteReader:

    def __init__(self, db: SQLiteDatabase, settings: Settings):
        self._notes = db[settings.notes_collection]
        self._pivots = db[settings.note_tags_collection]
        self._chunk_size = settings.query_id_chunk_size
        self._default_limit = settings.default_page_size
        self._max_limit = settings.max_page_size

    async def tags_for_notes(self, note_ids: List[str]) -> Dict[str, List[str]]:
        """Tag names per note id from the pivot collection, in pivot order."""
        tags: Dict[str, List[str]] = {note_id: [] for note_id in note_ids}
        for batch in chunked(note_ids, self._chunk_size):
            cursor = self._pivots.find({"noteId": {"$in": batch}}).sort("createdAt", 1)
            async for pivot in cursor:
                name = pivot.get("tag")
                names = tags.setdefault(pivot["noteId"], [])
                if name and name.lower() not in {n.lower() for n in names}:
                    names.append(name)
        return tags

    async def hydrate(self, notes: List[dict], report: SyncReport) -> List[dict]:
        """Attach "tags" to each note; falls back to Note.tagNames on failure."""
        if not notes:
            return notes
        loaded = await report.attempt(
            "hydrate_tags", self.tags_for_notes([n["_id"] for n in notes]), target=f"{len(notes)} notes"
        )
        for note in notes:
            if loaded.ok and loaded.value.get(note["_id"]):
                note["tags"] = loaded.value[note["_id"]]
            else:
                note["tags"] = list(note.get("tagNames") or [])
        return notes

    async def list_notes_page(self, owner_id: Optional[str] = None,
                              query: Optional[Dict[str, Any]] = None,
                              cursor: Optional[str] = None,
                              limit: Optional[int] = None) -> NotePage:
        """One page of notes, newest first, tag-hydrated.

        Args:
            owner_id: Restrict to this owner's notes.
            query: Extra store filter (combined with owner_id when both given).
            cursor: next_cursor from the previous page.
            limit: Page size, clamped to [1, max_page_size].

        Raises:
            InvalidCursorError: If cursor can't be decoded.
        """
        limit = max(1, min(limit or self._default_limit, self._max_limit))
        clauses: List[Dict[str, Any]] = []
        if owner_id is not None:
            clauses.append({"ownerId": owner_id})
        if query:
            clauses.append(query)
        if cursor:
            clauses.append(_after(decode_cursor(cursor)))

        filters: Dict[str, Any] = {"$and": clauses} if clauses else {}
        notes = await (
            self._notes.find(filters)
            .sort([("createdAt", -1), ("_id", -1)])
            .limit(limit)
            .to_list()
        )

        page = NotePage(notes=notes)
        await self.hydrate(notes, page.report)
        page.has_more = len(notes) == limit
        if page.has_more:
            page.next_cursor = encode_cursor(notes[-1])
        return page

    async def get_note(self, note_id: str) -> Optional[dict]:
        """Single note with its tags hydrated, or None."""
        note = await self._notes.find_one({"_id": note_id})
        if note is None:
            return None
        await self.hydrate([note], SyncReport("get_note"))
        return note
