"""
Notes router.
Handles CRUD operations for notes plus their revision history.

Mutations return the note together with any best-effort consistency
steps (tag pivots, counters, revisions) that failed, as syncErrors.
The note write itself either succeeds or the request fails.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query

from consistency.attachment_stores import parse_embedded
from consistency.errors import ConsistencyError
from consistency.results import SyncReport
from models.note import (
    NoteCreate,
    NoteMutationResponse,
    NotePageResponse,
    NoteResponse,
    NoteUpdate,
    SyncErrorResponse,
)
from models.tag import RevisionResponse
from routers.auth import get_current_user
from routers.deps import Services, get_services, raise_http

logger = logging.getLogger(__name__)
router = APIRouter()


def _doc_to_response(doc: dict) -> NoteResponse:
    """Convert a stored note document to a NoteResponse.

    Args:
        doc: Raw document with camelCase fields, tag-hydrated by the reader.

    Returns:
        NoteResponse with snake_case fields.
    """
    return NoteResponse(
        id=str(doc["_id"]),
        owner_id=doc.get("ownerId"),
        title=doc.get("title") or "Untitled",
        content=doc.get("content") or "",
        format=doc.get("format") or "text",
        tags=doc.get("tags", doc.get("tagNames") or []),
        attachments=parse_embedded(doc),
        is_public=bool(doc.get("isPublic")),
        status=doc.get("status") or "active",
        created_at=doc.get("createdAt"),
        updated_at=doc.get("updatedAt"),
    )


def _mutation_response(doc: dict, report: SyncReport) -> NoteMutationResponse:
    return NoteMutationResponse(
        note=_doc_to_response(doc),
        sync_errors=[SyncErrorResponse(**e.to_dict()) for e in report.failures],
    )


def _revision_to_response(doc: dict) -> RevisionResponse:
    return RevisionResponse(
        id=str(doc["_id"]),
        note_id=doc["noteId"],
        revision_number=doc["revisionNumber"],
        owner_id=doc.get("ownerId"),
        title=doc.get("title"),
        content=doc.get("content"),
        diff=doc.get("diff"),
        diff_format=doc.get("diffFormat"),
        full_snapshot=bool(doc.get("fullSnapshot")),
        cause=doc.get("cause") or "manual",
        created_at=doc["createdAt"],
    )


@router.post("", response_model=NoteMutationResponse)
async def create_note(
    data: NoteCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> NoteMutationResponse:
    """Create a note and sync its tags."""
    result = await services.notes.create_note(current_user["id"], data)
    return _mutation_response(result.note, result.report)


@router.get("", response_model=NotePageResponse)
async def list_notes(
    cursor: Optional[str] = Query(None, description="next_cursor from the previous page"),
    limit: Optional[int] = Query(None, ge=1),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> NotePageResponse:
    """
    List the user's notes, newest first.

    Page through with next_cursor until has_more is false.
    """
    try:
        page = await services.notes.list_notes(current_user["id"], cursor=cursor, limit=limit)
    except ConsistencyError as e:
        raise_http(e)

    return NotePageResponse(
        notes=[_doc_to_response(doc) for doc in page.notes],
        next_cursor=page.next_cursor,
        has_more=page.has_more,
    )


@router.get("/{note_id}", response_model=NoteResponse)
async def get_note(
    note_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> NoteResponse:
    """Get a note the user owns, collaborates on, or that is public."""
    try:
        doc = await services.notes.get_note(note_id, current_user["id"])
    except ConsistencyError as e:
        raise_http(e)
    return _doc_to_response(doc)


@router.put("/{note_id}", response_model=NoteMutationResponse)
async def update_note(
    note_id: str,
    data: NoteUpdate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> NoteMutationResponse:
    """Update a note (owner or accepted collaborator)."""
    try:
        result = await services.notes.update_note(note_id, current_user["id"], data)
    except ConsistencyError as e:
        raise_http(e)
    return _mutation_response(result.note, result.report)


@router.delete("/{note_id}")
async def delete_note(
    note_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    """Delete a note and clean up its tags, attachments and revisions."""
    try:
        report = await services.notes.delete_note(note_id, current_user["id"])
    except ConsistencyError as e:
        raise_http(e)
    return {
        "message": "Note deleted",
        "syncErrors": [e.to_dict() for e in report.failures],
    }


@router.get("/{note_id}/revisions", response_model=List[RevisionResponse])
async def list_revisions(
    note_id: str,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> List[RevisionResponse]:
    """Revision history, newest first (defaults to the plan's retention count)."""
    try:
        docs = await services.notes.list_revisions(note_id, current_user["id"], limit)
    except ConsistencyError as e:
        raise_http(e)
    return [_revision_to_response(d) for d in docs]


@router.get("/{note_id}/revisions/{number}", response_model=RevisionResponse)
async def get_revision(
    note_id: str,
    number: int,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> RevisionResponse:
    """Get one revision by number."""
    try:
        doc = await services.notes.get_revision(note_id, current_user["id"], number)
    except ConsistencyError as e:
        raise_http(e)
    if not doc:
        raise HTTPException(status_code=404, detail="Revision not found")
    return _revision_to_response(doc)
