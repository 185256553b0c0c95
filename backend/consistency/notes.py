"""
Note service.

Orchestrates a note mutation across collections in a fixed order:
  create:  note write -> tag sync
  update:  note write -> tag sync (if tags given) -> revision -> detached prune
  delete:  note delete -> tag sync to [] -> attachment purge -> revision purge

The note document write is the only step whose failure reaches the
caller. Everything after it lands in the returned SyncReport.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import Settings
from consistency.access import NoteAccess
from consistency.attachments import AttachmentManager
from consistency.errors import NoteNotFoundError
from consistency.plans import PlanService
from consistency.reader import NotePage, NoteReader
from consistency.results import SyncReport
from consistency.revisions import RevisionTracker, has_significant_changes
from consistency.tag_sync import TagSynchronizer, normalize_tag_names
from models.note import NoteCreate, NoteUpdate
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)

# NoteUpdate field -> stored document field
_UPDATABLE_FIELDS = {
    "title": "title",
    "content": "content",
    "format": "format",
    "is_public": "isPublic",
    "status": "status",
}


@dataclass
class NoteResult:
    note: dict
    report: SyncReport


def _snapshot(note: dict) -> Dict[str, Any]:
    return {
        "title": note.get("title"),
        "content": note.get("content"),
        "tagNames": list(note.get("tagNames") or []),
        "format": note.get("format") or "text",
    }


class NoteService:

    def __init__(self, db: SQLiteDatabase, settings: Settings, plans: PlanService,
                 tag_sync: Optional[TagSynchronizer] = None,
                 revisions: Optional[RevisionTracker] = None,
                 attachments: Optional[AttachmentManager] = None,
                 reader: Optional[NoteReader] = None):
        self._notes = db[settings.notes_collection]
        self._collaborators = db[settings.collaborators_collection]
        self.access = NoteAccess(db, settings)
        self.tag_sync = tag_sync or TagSynchronizer(db, settings)
        self.revisions = revisions or RevisionTracker(db, settings, plans)
        self.attachments = attachments or AttachmentManager(db, settings, plans)
        self.reader = reader or NoteReader(db, settings)

    async def _hydrated(self, note_id: str) -> dict:
        note = await self.reader.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    async def create_note(self, owner_id: str, data: NoteCreate) -> NoteResult:
        now = datetime.now(timezone.utc)
        names = normalize_tag_names(data.tags)
        doc = {
            "ownerId": owner_id,
            "title": data.title or "Untitled",
            "content": data.content,
            "format": data.format,
            "tagNames": names,
            "attachments": [],
            "isPublic": data.is_public,
            "status": data.status,
            "createdAt": now,
            "updatedAt": now,
        }
        result = await self._notes.insert_one(doc)
        note_id = result.inserted_id
        logger.info(f"Note {note_id} created by {owner_id}")

        report = await self.tag_sync.sync(note_id, owner_id, names)
        return NoteResult(await self._hydrated(note_id), report)

    async def update_note(self, note_id: str, user_id: str, data: NoteUpdate) -> NoteResult:
        """Apply an update as the owner or an accepted collaborator.

        Raises:
            NoteNotFoundError, AccessDeniedError.
        """
        note = await self.access.require_writer(note_id, user_id)
        owner_id = note.get("ownerId")
        before = _snapshot(note)

        fields = data.model_dump(exclude_unset=True)
        changes = {
            _UPDATABLE_FIELDS[k]: v for k, v in fields.items()
            if k in _UPDATABLE_FIELDS and v is not None
        }
        tags_given = data.tags is not None
        if tags_given:
            changes["tagNames"] = normalize_tag_names(data.tags)

        after = {**before, **{k: v for k, v in changes.items() if k in before}}
        changes["updatedAt"] = datetime.now(timezone.utc)
        await self._notes.update_one({"_id": note_id}, {"$set": changes})

        report = SyncReport("update_note")
        if tags_given:
            report.merge(await self.tag_sync.sync(note_id, owner_id or user_id, changes["tagNames"]))

        if data.autosave and not has_significant_changes(before, after):
            logger.debug(f"Autosave of note {note_id} below revision threshold")
        else:
            cause = data.cause or ("collab" if user_id != owner_id else "manual")
            recorded = await report.attempt(
                "record_revision",
                self.revisions.record_revision(note_id, owner_id, before, after, cause),
                target=note_id,
            )
            if recorded.ok and recorded.value is not None:
                self.revisions.schedule_prune(note_id, owner_id)

        return NoteResult(await self._hydrated(note_id), report)

    async def get_note(self, note_id: str, user_id: Optional[str]) -> dict:
        await self.access.require_reader(note_id, user_id)
        return await self._hydrated(note_id)

    async def list_notes(self, owner_id: str, cursor: Optional[str] = None,
                         limit: Optional[int] = None) -> NotePage:
        return await self.reader.list_notes_page(owner_id=owner_id, cursor=cursor, limit=limit)

    async def delete_note(self, note_id: str, user_id: str) -> SyncReport:
        """Delete a note (owner only) and clean up its satellites best-effort."""
        note = await self.access.require_owner(note_id, user_id, action="delete")
        await self._notes.delete_one({"_id": note_id})
        logger.info(f"Note {note_id} deleted by {user_id}")

        report = SyncReport("delete_note")
        report.merge(await self.tag_sync.sync(note_id, user_id, []))
        await self.attachments.purge_note(note, report)
        await report.attempt("delete_revisions", self.revisions.delete_for_note(note_id), target=note_id)
        await report.attempt(
            "delete_collaborators", self._collaborators.delete_many({"noteId": note_id}), target=note_id
        )
        return report

    async def list_revisions(self, note_id: str, user_id: str,
                             limit: Optional[int] = None) -> List[dict]:
        note = await self.access.require_reader(note_id, user_id)
        return await self.revisions.list_revisions(note_id, note.get("ownerId"), limit)

    async def get_revision(self, note_id: str, user_id: str, number: int) -> Optional[dict]:
        await self.access.require_reader(note_id, user_id)
        return await self.revisions.get_revision(note_id, number)
