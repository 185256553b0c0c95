"""
Pydantic models package.
Each module contains models for a specific domain.
"""

from models.attachment import AttachmentMeta, AttachmentRecord, SignedUrlRequest, SignedUrlResponse
from models.note import NoteCreate, NoteMutationResponse, NotePageResponse, NoteResponse, NoteUpdate
from models.tag import RevisionResponse, TagResponse

__all__ = [
    "AttachmentMeta", "AttachmentRecord", "SignedUrlRequest", "SignedUrlResponse",
    "NoteCreate", "NoteMutationResponse", "NotePageResponse", "NoteResponse", "NoteUpdate",
    "RevisionResponse", "TagResponse",
]
