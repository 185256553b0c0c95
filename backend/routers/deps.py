"""
Service wiring for the routers.

The lifespan builds one Services container per app from its database and
settings and stores it on app.state.services. Routers pull individual
services through the dependencies below, which tests can override.
"""

from dataclasses import dataclass
from typing import NoReturn, Optional

from fastapi import HTTPException, Request

from config import Settings
from consistency.attachments import AttachmentManager
from consistency.errors import (
    AccessDeniedError,
    AttachmentError,
    AttachmentSizeLimitError,
    InvalidCursorError,
    MissingBucketConfigError,
    NoteNotFoundError,
    UnsupportedMimeTypeError,
)
from consistency.maintenance import TagMaintenance
from consistency.notes import NoteService
from consistency.plans import PlanService, SubscriptionPlanService
from consistency.reader import NoteReader
from consistency.revisions import RevisionTracker
from consistency.signing import AccessTokenSigner
from consistency.tag_sync import TagSynchronizer
from sqlite_db import SQLiteDatabase


@dataclass
class Services:
    settings: Settings
    plans: PlanService
    tags: TagSynchronizer
    revisions: RevisionTracker
    attachments: AttachmentManager
    notes: NoteService
    signer: AccessTokenSigner
    maintenance: TagMaintenance


def build_services(db: SQLiteDatabase, settings: Settings,
                   plans: Optional[PlanService] = None) -> Services:
    plans = plans or SubscriptionPlanService(db, settings)
    tags = TagSynchronizer(db, settings)
    revisions = RevisionTracker(db, settings, plans)
    attachments = AttachmentManager(db, settings, plans)
    notes = NoteService(
        db, settings, plans,
        tag_sync=tags,
        revisions=revisions,
        attachments=attachments,
        reader=NoteReader(db, settings),
    )
    return Services(
        settings=settings,
        plans=plans,
        tags=tags,
        revisions=revisions,
        attachments=attachments,
        notes=notes,
        signer=AccessTokenSigner.from_settings(settings),
        maintenance=TagMaintenance(db, settings, counter=tags.counter),
    )


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized; is the app lifespan running?")
    return services


def raise_http(exc: Exception) -> NoReturn:
    """Translate a consistency-layer error into an HTTPException."""
    if isinstance(exc, NoteNotFoundError):
        raise HTTPException(status_code=404, detail="Note not found") from exc
    if isinstance(exc, AccessDeniedError):
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    if isinstance(exc, InvalidCursorError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, AttachmentSizeLimitError):
        raise HTTPException(status_code=413, detail=exc.to_dict()) from exc
    if isinstance(exc, UnsupportedMimeTypeError):
        raise HTTPException(status_code=415, detail=exc.to_dict()) from exc
    if isinstance(exc, MissingBucketConfigError):
        raise HTTPException(status_code=500, detail=exc.to_dict()) from exc
    if isinstance(exc, AttachmentError):
        raise HTTPException(status_code=400, detail=exc.to_dict()) from exc
    raise exc
