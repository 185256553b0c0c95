"""Tests for the attachment lifecycle: validation, dual-write, merge and removal."""

import json
import re
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from consistency.attachments import (
    AttachmentManager,
    UploadedFile,
    sanitize_attachment_filename,
    validate_attachment_mime,
)
from consistency.blob_storage import owner_key
from consistency.errors import (
    AccessDeniedError,
    AttachmentSizeLimitError,
    MissingBucketConfigError,
    NoteNotFoundError,
    UnsupportedMimeTypeError,
)
from consistency.results import SyncReport
from models.attachment import AttachmentMeta

from conftest import insert_note, make_settings

ONE_MB = 1024 * 1024
SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]{1,120}$")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def manager(db, settings, plans):
    return AttachmentManager(db, settings, plans)


def _png(name="photo.png", size=16):
    return UploadedFile(filename=name, content=b"\x89PNG" + b"0" * (size - 4), content_type="image/png")


def _blob_files(settings):
    root = Path(settings.attachments_bucket_dir)
    if not root.exists():
        return []
    return [p for p in root.rglob("*") if p.is_file()]


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

class TestValidation:

    @pytest.mark.parametrize("mime", ["image/png", "image/webp", "application/pdf", "text/plain", "text/markdown"])
    def test_allowed_mime(self, mime):
        assert validate_attachment_mime(mime) == mime

    def test_missing_mime_is_octet_stream(self):
        assert validate_attachment_mime(None) == "application/octet-stream"
        assert validate_attachment_mime("") == "application/octet-stream"

    def test_zip_rejected_with_allow_list(self):
        with pytest.raises(UnsupportedMimeTypeError) as exc:
            validate_attachment_mime("application/zip")
        body = exc.value.to_dict()
        assert body["code"] == "UNSUPPORTED_MIME_TYPE"
        assert body["mime"] == "application/zip"
        assert "image/" in body["allowedPrefixes"]
        assert "application/pdf" in body["allowedTypes"]

    @pytest.mark.parametrize("raw,expected", [
        ("my file!!.PNG", "my_file.PNG"),
        ("../../etc/passwd", "passwd.bin"),
        ("C:\\Users\\me\\report.pdf", "report.pdf"),
        ("", "attachment.bin"),
        (None, "attachment.bin"),
        ("日本語", "attachment.bin"),
        ("a" * 150 + ".png", "a" * 116 + ".bin"),
    ])
    def test_sanitize(self, raw, expected):
        assert sanitize_attachment_filename(raw) == expected

    @pytest.mark.parametrize("raw", ["a" * 500, "b" * 300 + ".png", "x y z", "..", "%00.exe"])
    def test_sanitized_names_always_safe(self, raw):
        assert SAFE_NAME.match(sanitize_attachment_filename(raw))


# ---------------------------------------------------------------------------
# add_attachment
# ---------------------------------------------------------------------------

class TestAdd:

    @pytest.mark.asyncio
    async def test_owner_upload_writes_both_schemas(self, db, settings, manager):
        note_id = await insert_note(db)
        report = SyncReport("add_attachment")

        meta = await manager.add_attachment(note_id, "alice", _png("my shot.png"), report=report)

        assert report.ok
        assert meta.name == "my_shot.png"
        assert meta.mime == "image/png"
        assert meta.size == 16

        note = await db.notes.find_one({"_id": note_id})
        assert len(note["attachments"]) == 1
        assert json.loads(note["attachments"][0])["id"] == meta.id

        record = await db.attachments.find_one({"noteId": note_id})
        assert record["fileId"] == meta.id
        assert record["ownerId"] == "alice"
        assert record["filename"] == "my_shot.png"

        assert (Path(settings.attachments_bucket_dir) / owner_key("alice") / meta.id).read_bytes().startswith(b"\x89PNG")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("owner", ["auth0|5f1c", "alice@example.com", "first.last"])
    async def test_token_subject_owner_ids(self, db, settings, manager, owner):
        note_id = await insert_note(db, owner_id=owner)

        meta = await manager.add_attachment(note_id, owner, UploadedFile("a.txt", b"hi", "text/plain"))

        assert await manager.blobs.read(owner, meta.id) == b"hi"
        [path] = _blob_files(settings)
        assert path.parent.name == owner_key(owner)
        assert await manager.remove_attachment(note_id, owner, meta.id)
        assert _blob_files(settings) == []

    @pytest.mark.asyncio
    async def test_exactly_at_cap_is_accepted(self, db, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", _png(size=ONE_MB))
        assert meta.size == ONE_MB

    @pytest.mark.asyncio
    async def test_one_byte_over_cap_rejected_before_writes(self, db, settings, manager):
        note_id = await insert_note(db)

        with pytest.raises(AttachmentSizeLimitError) as exc:
            await manager.add_attachment(note_id, "alice", _png(size=ONE_MB + 1))

        assert exc.value.to_dict()["limitMB"] == 1
        assert exc.value.to_dict()["limitBytes"] == ONE_MB
        assert _blob_files(settings) == []
        assert (await db.notes.find_one({"_id": note_id}))["attachments"] == []

    @pytest.mark.asyncio
    async def test_unsupported_mime_rejected_before_writes(self, db, settings, manager):
        note_id = await insert_note(db)
        upload = UploadedFile(filename="a.zip", content=b"PK", content_type="application/zip")

        with pytest.raises(UnsupportedMimeTypeError):
            await manager.add_attachment(note_id, "alice", upload)
        assert _blob_files(settings) == []

    @pytest.mark.asyncio
    async def test_missing_mime_stored_as_octet_stream(self, db, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", UploadedFile(filename="blob", content=b"x"))
        assert meta.mime == "application/octet-stream"
        assert meta.name == "blob.bin"

    @pytest.mark.asyncio
    async def test_collaborator_cannot_attach(self, db, manager):
        note_id = await insert_note(db)
        await db.collaborators.insert_one({"noteId": note_id, "userId": "bob", "status": "accepted"})

        with pytest.raises(AccessDeniedError):
            await manager.add_attachment(note_id, "bob", _png())

    @pytest.mark.asyncio
    async def test_missing_note(self, manager):
        with pytest.raises(NoteNotFoundError):
            await manager.add_attachment("missing", "alice", _png())

    @pytest.mark.asyncio
    async def test_plan_cap_is_the_owners(self, db, manager, plans):
        note_id = await insert_note(db)
        await manager.add_attachment(note_id, "alice", _png())
        assert plans.calls == ["alice"]

    @pytest.mark.asyncio
    async def test_record_failure_is_best_effort(self, db, manager):
        note_id = await insert_note(db)
        manager.store.collection.add = AsyncMock(side_effect=RuntimeError("collection down"))
        report = SyncReport("add_attachment")

        meta = await manager.add_attachment(note_id, "alice", _png(), report=report)

        assert [e.step for e in report.failures] == ["write_record"]
        listed = await manager.list_attachments(note_id, "alice")
        assert [m.id for m in listed] == [meta.id]

    @pytest.mark.asyncio
    async def test_embedded_failure_deletes_orphan_blob(self, db, settings, manager):
        note_id = await insert_note(db)
        manager.store.embedded.add = AsyncMock(side_effect=RuntimeError("note write failed"))

        with pytest.raises(RuntimeError):
            await manager.add_attachment(note_id, "alice", _png())

        assert _blob_files(settings) == []
        assert await db.attachments.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_embedded_only_mode(self, db, tmp_path, plans):
        settings = make_settings(tmp_path, attachments_collection=None)
        manager = AttachmentManager(db, settings, plans)
        note_id = await insert_note(db)

        meta = await manager.add_attachment(note_id, "alice", _png())

        assert manager.store.collection is None
        assert [m.id for m in await manager.list_attachments(note_id, "alice")] == [meta.id]
        assert await db.attachments.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_missing_bucket_is_config_error(self, db, tmp_path, plans):
        settings = make_settings(tmp_path, attachments_bucket_dir=None)
        manager = AttachmentManager(db, settings, plans)
        note_id = await insert_note(db)

        with pytest.raises(MissingBucketConfigError):
            await manager.add_attachment(note_id, "alice", _png())


# ---------------------------------------------------------------------------
# list_attachments
# ---------------------------------------------------------------------------

class TestList:

    @pytest.mark.asyncio
    async def test_read_guard(self, db, manager):
        note_id = await insert_note(db)
        await manager.add_attachment(note_id, "alice", _png())
        await db.collaborators.insert_one({"noteId": note_id, "userId": "bob", "status": "accepted"})
        await db.collaborators.insert_one({"noteId": note_id, "userId": "carol", "status": "pending"})

        assert len(await manager.list_attachments(note_id, "alice")) == 1
        assert len(await manager.list_attachments(note_id, "bob")) == 1
        assert await manager.list_attachments(note_id, "carol") == []
        assert await manager.list_attachments(note_id, "mallory") == []
        assert await manager.list_attachments(note_id, None) == []
        assert await manager.list_attachments("missing", "alice") == []

    @pytest.mark.asyncio
    async def test_merge_rules(self, db, manager):
        legacy = AttachmentMeta(id="legacy1", name="old.png", size=3, mime="image/png",
                                createdAt="2026-01-01T00:00:00+00:00")
        mirrored = AttachmentMeta(id="both1", name="embedded.png", size=5, mime="image/png",
                                  createdAt="2026-01-02T00:00:00+00:00")
        note_id = await insert_note(db, attachments=[mirrored.serialize(), legacy.serialize()])
        await db.attachments.insert_one({
            "noteId": note_id, "ownerId": "alice", "fileId": "both1",
            "filename": "renamed.png", "mimetype": "image/png", "sizeBytes": 5,
        })
        # Record without an embedded entry was never committed
        await db.attachments.insert_one({
            "noteId": note_id, "ownerId": "alice", "fileId": "orphan1",
            "filename": "orphan.png", "mimetype": "image/png", "sizeBytes": 1,
        })

        listed = await manager.list_attachments(note_id, "alice")

        assert [m.id for m in listed] == ["legacy1", "both1"]
        assert listed[1].name == "renamed.png"
        assert listed[0].name == "old.png"

    @pytest.mark.asyncio
    async def test_unreadable_embedded_entries_skipped(self, db, manager):
        good = AttachmentMeta(id="g1", name="g.png")
        note_id = await insert_note(db, attachments=["{not json", json.dumps({"name": "no id"}), good.serialize()])

        assert [m.id for m in await manager.list_attachments(note_id, "alice")] == ["g1"]

    @pytest.mark.asyncio
    async def test_record_read_failure_falls_back_to_embedded(self, db, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", _png())
        manager.store.collection.list = AsyncMock(side_effect=RuntimeError("read failed"))

        assert [m.id for m in await manager.list_attachments(note_id, "alice")] == [meta.id]


# ---------------------------------------------------------------------------
# remove_attachment
# ---------------------------------------------------------------------------

class TestRemove:

    @pytest.mark.asyncio
    async def test_remove_cleans_every_store(self, db, settings, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", _png())
        report = SyncReport("remove_attachment")

        assert await manager.remove_attachment(note_id, "alice", meta.id, report=report)

        assert report.ok
        assert (await db.notes.find_one({"_id": note_id}))["attachments"] == []
        assert await db.attachments.count_documents({"noteId": note_id}) == 0
        assert _blob_files(settings) == []

    @pytest.mark.asyncio
    async def test_remove_unknown_id(self, db, manager):
        note_id = await insert_note(db)
        assert not await manager.remove_attachment(note_id, "alice", "nope")

    @pytest.mark.asyncio
    async def test_blob_failure_reported_not_raised(self, db, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", _png())
        manager.blobs.delete = AsyncMock(side_effect=OSError("bucket unavailable"))
        report = SyncReport("remove_attachment")

        assert await manager.remove_attachment(note_id, "alice", meta.id, report=report)

        assert [e.step for e in report.failures] == ["delete_blob"]
        assert await manager.list_attachments(note_id, "alice") == []

    @pytest.mark.asyncio
    async def test_non_owner_cannot_remove(self, db, manager):
        note_id = await insert_note(db)
        meta = await manager.add_attachment(note_id, "alice", _png())

        with pytest.raises(AccessDeniedError):
            await manager.remove_attachment(note_id, "bob", meta.id)
        assert len(await manager.list_attachments(note_id, "alice")) == 1

    @pytest.mark.asyncio
    async def test_purge_note(self, db, settings, manager):
        note_id = await insert_note(db)
        await manager.add_attachment(note_id, "alice", _png("a.png"))
        await manager.add_attachment(note_id, "alice", _png("b.png"))
        note = await db.notes.find_one({"_id": note_id})
        report = SyncReport("delete_note")

        await manager.purge_note(note, report)

        assert report.ok
        assert _blob_files(settings) == []
        assert await db.attachments.count_documents({}) == 0
