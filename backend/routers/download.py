"""
Signed attachment download proxy.

Served without bearer auth because <img> tags and download links can't
send Authorization headers. The HMAC token in the query string is the
credential; every verification failure is a 403 carrying the reason.
Rate-limited per client IP by RateLimitMiddleware.
"""

import logging
import mimetypes
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from consistency.errors import ConsistencyError
from routers.deps import Services, get_services, raise_http

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/download")
async def download_attachment(
    note_id: Optional[str] = Query(None, alias="noteId"),
    owner_id: Optional[str] = Query(None, alias="ownerId"),
    file_id: Optional[str] = Query(None, alias="fileId"),
    exp: Optional[str] = Query(None),
    sig: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> Response:
    """Stream an attachment for a valid signed URL.

    Raises:
        HTTPException: 403 with the verification reason, or 404 if the
            file is no longer attached to the note.
    """
    if not all((note_id, owner_id, file_id, exp, sig)):
        raise HTTPException(status_code=403, detail={"reason": "missing_parameters"})

    verdict = services.signer.verify(note_id, owner_id, file_id, exp, sig)
    if not verdict.valid:
        logger.warning(f"Rejected signed download for {note_id}/{file_id}: {verdict.reason}")
        raise HTTPException(status_code=403, detail={"reason": verdict.reason})

    try:
        note = await services.notes.access.load(note_id)
    except ConsistencyError as e:
        raise_http(e)
    if note.get("ownerId") != owner_id or not services.attachments.is_attached(note, file_id):
        raise HTTPException(status_code=404, detail="Attachment not found")

    meta = next((m for m in await services.attachments.store.list(note_id) if m.id == file_id), None)
    if meta is None:
        raise HTTPException(status_code=404, detail="Attachment not found")
    try:
        content = await services.attachments.blobs.read(owner_id, file_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Attachment not found")
    except ConsistencyError as e:
        raise_http(e)

    media_type = meta.mime or mimetypes.guess_type(meta.name)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{meta.name}"'},
    )
