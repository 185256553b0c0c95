"""
Attachment metadata stores.

Two schemas hold attachment metadata: the legacy embedded array on the
note and the optional dedicated collection. Both sit behind one
AttachmentStore interface; MergingAttachmentStore composes them so the
rest of the code never deals with "which schema is this note on".

Membership rule: a blob is attached iff its id is in the embedded array.
Metadata rule: the collection row wins when both forms describe a blob.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from consistency.errors import NoteNotFoundError
from consistency.results import SyncReport
from models.attachment import AttachmentMeta, AttachmentRecord
from sqlite_db import SQLiteCollection

logger = logging.getLogger(__name__)


def parse_embedded(note: dict) -> List[AttachmentMeta]:
    """Read Note.attachments, skipping entries that don't parse."""
    raw = note.get("attachments") or []
    if not isinstance(raw, list):
        return []
    metas = []
    for entry in raw:
        meta = AttachmentMeta.parse(entry)
        if meta is None:
            logger.warning(f"Skipping unreadable attachment entry on note {note.get('_id')}")
            continue
        metas.append(meta)
    return metas


class AttachmentStore(ABC):

    @abstractmethod
    async def list(self, note_id: str) -> List[AttachmentMeta]:
        pass

    @abstractmethod
    async def add(self, note_id: str, owner_id: str, meta: AttachmentMeta) -> None:
        pass

    @abstractmethod
    async def remove(self, note_id: str, file_id: str) -> bool:
        pass


class EmbeddedAttachmentStore(AttachmentStore):
    """Note.attachments, rewritten whole on every change (last writer wins)."""

    def __init__(self, notes: SQLiteCollection):
        self._notes = notes

    async def _load(self, note_id: str) -> dict:
        note = await self._notes.find_one({"_id": note_id})
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    async def _write(self, note_id: str, metas: List[AttachmentMeta]) -> None:
        await self._notes.update_one(
            {"_id": note_id},
            {"$set": {"attachments": [m.serialize() for m in metas]}},
        )

    async def list(self, note_id: str) -> List[AttachmentMeta]:
        return parse_embedded(await self._load(note_id))

    async def add(self, note_id: str, owner_id: str, meta: AttachmentMeta) -> None:
        metas = await self.list(note_id)
        metas.append(meta)
        await self._write(note_id, metas)

    async def remove(self, note_id: str, file_id: str) -> bool:
        metas = await self.list(note_id)
        remaining = [m for m in metas if m.id != file_id]
        if len(remaining) == len(metas):
            return False
        await self._write(note_id, remaining)
        return True


class CollectionAttachmentStore(AttachmentStore):
    """Dedicated attachments collection, one row per (noteId, fileId)."""

    def __init__(self, collection: SQLiteCollection):
        self._collection = collection

    async def records(self, note_id: str) -> List[AttachmentRecord]:
        docs = await self._collection.find({"noteId": note_id}).sort("createdAt", 1).to_list()
        return [AttachmentRecord.model_validate(d) for d in docs]

    async def list(self, note_id: str) -> List[AttachmentMeta]:
        return [
            AttachmentMeta(
                id=r.fileId,
                name=r.filename,
                size=r.sizeBytes,
                mime=r.mimetype,
                createdAt=r.createdAt.isoformat(),
            )
            for r in await self.records(note_id)
        ]

    async def add(self, note_id: str, owner_id: str, meta: AttachmentMeta) -> None:
        record = AttachmentRecord(
            noteId=note_id,
            ownerId=owner_id,
            fileId=meta.id,
            filename=meta.name,
            mimetype=meta.mime,
            sizeBytes=meta.size,
            createdAt=datetime.fromisoformat(meta.createdAt),
        )
        await self._collection.insert_one(record.model_dump(exclude={"id"}))

    async def remove(self, note_id: str, file_id: str) -> bool:
        result = await self._collection.delete_many({"noteId": note_id, "fileId": file_id})
        return result.deleted_count > 0

    async def remove_note(self, note_id: str) -> int:
        result = await self._collection.delete_many({"noteId": note_id})
        return result.deleted_count


class MergingAttachmentStore(AttachmentStore):
    """Embedded store as the commit point, collection store as best-effort mirror.

    With no collection configured this is embedded-only mode.
    """

    def __init__(self, embedded: EmbeddedAttachmentStore,
                 collection: Optional[CollectionAttachmentStore] = None):
        self.embedded = embedded
        self.collection = collection

    async def list(self, note_id: str, report: Optional[SyncReport] = None) -> List[AttachmentMeta]:
        embedded = await self.embedded.list(note_id)
        if self.collection is None or not embedded:
            return embedded

        report = report or SyncReport("list_attachments")
        loaded = await report.attempt("list_records", self.collection.list(note_id), target=note_id)
        if not loaded.ok or not loaded.value:
            return embedded

        by_id: Dict[str, AttachmentMeta] = {r.id: r for r in loaded.value}
        merged = []
        for meta in embedded:
            record = by_id.get(meta.id)
            if record is None:
                merged.append(meta)
                continue
            merged.append(AttachmentMeta(
                id=meta.id,
                name=record.name or meta.name,
                size=record.size or meta.size,
                mime=record.mime or meta.mime,
                createdAt=meta.createdAt,
            ))
        return sorted(merged, key=lambda m: m.createdAt)

    async def add(self, note_id: str, owner_id: str, meta: AttachmentMeta,
                  report: Optional[SyncReport] = None) -> None:
        await self.embedded.add(note_id, owner_id, meta)
        if self.collection is not None:
            report = report or SyncReport("add_attachment")
            await report.attempt("write_record", self.collection.add(note_id, owner_id, meta), target=meta.id)

    async def remove(self, note_id: str, file_id: str,
                     report: Optional[SyncReport] = None) -> bool:
        removed = await self.embedded.remove(note_id, file_id)
        if removed and self.collection is not None:
            report = report or SyncReport("remove_attachment")
            await report.attempt("delete_record", self.collection.remove(note_id, file_id), target=file_id)
        return removed
