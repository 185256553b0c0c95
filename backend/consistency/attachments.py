"""
Attachment lifecycle manager.

add_attachment validates before it writes anything:
  1. caller owns the note
  2. file size is within the owner's plan cap
  3. MIME type is on the allow-list (absent MIME counts as octet-stream)
  4. filename is sanitized
then uploads the blob, appends to Note.attachments (the commit point) and
dual-writes the collection record best-effort.

remove_attachment drops the embedded entry first; blob and record
deletion afterwards are best-effort and only show up in the SyncReport.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from config import Settings
from consistency.access import NoteAccess
from consistency.attachment_stores import (
    CollectionAttachmentStore,
    EmbeddedAttachmentStore,
    MergingAttachmentStore,
    parse_embedded,
)
from consistency.blob_storage import BlobStorage, LocalBlobStorage
from consistency.errors import (
    AttachmentSizeLimitError,
    NoteNotFoundError,
    UnsupportedMimeTypeError,
)
from consistency.plans import PlanService
from consistency.results import SyncReport
from models.attachment import AttachmentMeta
from sqlite_db import SQLiteDatabase

logger = logging.getLogger(__name__)

ALLOWED_MIME_PREFIXES = ("image/",)
ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/x-markdown",
    "application/octet-stream",
})
DEFAULT_MIME = "application/octet-stream"

MAX_FILENAME_LENGTH = 120
FALLBACK_EXTENSION = ".bin"


def validate_attachment_mime(mime: Optional[str]) -> str:
    """Return the effective MIME type or raise UnsupportedMimeTypeError."""
    if not mime:
        return DEFAULT_MIME
    if mime.startswith(ALLOWED_MIME_PREFIXES) or mime in ALLOWED_MIME_TYPES:
        return mime
    raise UnsupportedMimeTypeError(mime, ALLOWED_MIME_PREFIXES, ALLOWED_MIME_TYPES)


def sanitize_attachment_filename(name: Optional[str]) -> str:
    """Make an upload name safe to store and serve.

    "my file!!.PNG" -> "my_file.PNG"; "" -> "attachment.bin".
    The result always matches ^[A-Za-z0-9._-]{1,120}$.
    """
    name = (name or "").replace("\\", "/").split("/")[-1]
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"[^A-Za-z0-9._-]", "", name)
    if not name:
        name = "attachment"
    name = name[:MAX_FILENAME_LENGTH]
    if "." not in name:
        name = name[:MAX_FILENAME_LENGTH - len(FALLBACK_EXTENSION)] + FALLBACK_EXTENSION
    return name


@dataclass
class UploadedFile:
    """What the manager needs from an upload, independent of the web layer."""
    filename: Optional[str]
    content: bytes
    content_type: Optional[str] = None
    size: int = field(default=-1)

    def __post_init__(self):
        if self.size < 0:
            self.size = len(self.content)


class AttachmentManager:

    def __init__(self, db: SQLiteDatabase, settings: Settings, plans: PlanService,
                 blobs: Optional[BlobStorage] = None,
                 store: Optional[MergingAttachmentStore] = None):
        self._access = NoteAccess(db, settings)
        self._plans = plans
        self.blobs = blobs or LocalBlobStorage(settings.attachments_bucket_dir)
        if store is None:
            collection = None
            if settings.attachments_collection:
                collection = CollectionAttachmentStore(db[settings.attachments_collection])
            store = MergingAttachmentStore(
                EmbeddedAttachmentStore(db[settings.notes_collection]), collection
            )
        self.store = store

    async def add_attachment(self, note_id: str, owner_id: str, upload: UploadedFile,
                             report: Optional[SyncReport] = None) -> AttachmentMeta:
        """Validate, upload and record an attachment.

        Raises:
            NoteNotFoundError, AccessDeniedError, AttachmentSizeLimitError,
            UnsupportedMimeTypeError, MissingBucketConfigError.
        """
        report = report if report is not None else SyncReport("add_attachment")
        # Collaborators can't attach yet; owner only
        await self._access.require_owner(note_id, owner_id, action="add attachments to")

        policy = await self._plans.get_policy(owner_id)
        if upload.size > policy.attachment_size_bytes:
            raise AttachmentSizeLimitError(policy.attachment_size_mb)

        mime = validate_attachment_mime(upload.content_type)
        name = sanitize_attachment_filename(upload.filename)

        file_id = await self.blobs.upload(owner_id, upload.content)
        meta = AttachmentMeta(id=file_id, name=name, size=upload.size, mime=mime)
        try:
            await self.store.add(note_id, owner_id, meta, report=report)
        except Exception:
            # The blob isn't attached anywhere; don't leave it behind
            await report.attempt("delete_orphan_blob", self.blobs.delete(owner_id, file_id), target=file_id)
            raise

        logger.info(f"Attachment {file_id} ({name}, {upload.size} bytes) added to note {note_id}")
        return meta

    async def list_attachments(self, note_id: str, caller_id: Optional[str]) -> List[AttachmentMeta]:
        """Merged attachment list; empty for callers without read access."""
        try:
            note = await self._access.load(note_id)
        except NoteNotFoundError:
            return []
        if note.get("ownerId") != caller_id:
            if not caller_id or not await self._access.is_collaborator(note_id, caller_id):
                return []
        return await self.store.list(note_id)

    async def remove_attachment(self, note_id: str, owner_id: str, file_id: str,
                                report: Optional[SyncReport] = None) -> bool:
        """Detach and delete an attachment. Owner only.

        Returns:
            False if the id wasn't attached to the note.
        """
        report = report if report is not None else SyncReport("remove_attachment")
        note = await self._access.require_owner(note_id, owner_id, action="remove attachments from")

        removed = await self.store.remove(note_id, file_id, report=report)
        if not removed:
            return False

        blob_owner = note.get("ownerId") or owner_id
        await report.attempt("delete_blob", self.blobs.delete(blob_owner, file_id), target=file_id)
        logger.info(f"Attachment {file_id} removed from note {note_id}")
        return True

    def is_attached(self, note: dict, file_id: str) -> bool:
        return any(m.id == file_id for m in parse_embedded(note))

    async def purge_note(self, note: dict, report: SyncReport) -> None:
        """Best-effort removal of every blob and record of a deleted note."""
        owner_id = note.get("ownerId")
        for meta in parse_embedded(note):
            if owner_id:
                await report.attempt("delete_blob", self.blobs.delete(owner_id, meta.id), target=meta.id)
        if self.store.collection is not None:
            await report.attempt(
                "delete_records", self.store.collection.remove_note(note["_id"]), target=note["_id"]
            )

