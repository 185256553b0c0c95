"""
Note attachments router.

Uploads go through the attachment lifecycle manager, which enforces the
owner check, plan size cap, MIME allow-list and filename sanitization
before anything is written. Downloads use short-lived signed URLs served
by routers/download.py.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile

from consistency.attachments import UploadedFile
from consistency.errors import ConsistencyError
from consistency.results import SyncReport
from models.attachment import AttachmentMeta, SignedUrlRequest, SignedUrlResponse
from routers.auth import get_current_user
from routers.deps import Services, get_services, raise_http

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/{note_id}/attachments")
async def upload_attachment(
    note_id: str,
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Attach a file to a note (owner only).

    Returns:
        Dict with the stored 'attachment' metadata and 'syncErrors'.

    Raises:
        HTTPException: 403 not owner, 404 no note, 413 over plan cap,
            415 MIME not allowed, 500 storage not configured.
    """
    content = await file.read()
    upload = UploadedFile(filename=file.filename, content=content, content_type=file.content_type)
    report = SyncReport("add_attachment")
    try:
        meta = await services.attachments.add_attachment(note_id, current_user["id"], upload, report=report)
    except ConsistencyError as e:
        raise_http(e)
    return {
        "attachment": meta.model_dump(),
        "syncErrors": [e.to_dict() for e in report.failures],
    }


@router.get("/{note_id}/attachments", response_model=List[AttachmentMeta])
async def list_attachments(
    note_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> List[AttachmentMeta]:
    """List a note's attachments; empty for users without access."""
    return await services.attachments.list_attachments(note_id, current_user["id"])


@router.delete("/{note_id}/attachments/{file_id}")
async def remove_attachment(
    note_id: str,
    file_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Detach and delete an attachment (owner only)."""
    report = SyncReport("remove_attachment")
    try:
        removed = await services.attachments.remove_attachment(
            note_id, current_user["id"], file_id, report=report
        )
    except ConsistencyError as e:
        raise_http(e)
    return {"removed": removed, "syncErrors": [e.to_dict() for e in report.failures]}


@router.post("/{note_id}/attachments/{file_id}/signed-url", response_model=SignedUrlResponse)
async def create_signed_url(
    note_id: str,
    file_id: str,
    body: Optional[SignedUrlRequest] = Body(None),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> SignedUrlResponse:
    """Mint a short-lived download URL for an attachment.

    Raises:
        HTTPException: 404 if the file isn't attached, 503 if signing is disabled.
    """
    try:
        note = await services.notes.access.require_reader(note_id, current_user["id"])
    except ConsistencyError as e:
        raise_http(e)
    if not services.attachments.is_attached(note, file_id):
        raise HTTPException(status_code=404, detail="Attachment not found")

    signed = services.signer.issue(
        note_id, note.get("ownerId") or "", file_id,
        ttl_seconds=body.ttl_seconds if body else None,
    )
    if signed is None:
        raise HTTPException(status_code=503, detail="Signed attachment URLs are disabled")
    return SignedUrlResponse(url=signed.url, expires_at=signed.expires_at, ttl=signed.ttl)
