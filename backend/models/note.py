"""
Note model definitions.

Notes carry two denormalized caches kept in step by the consistency layer:
- tagNames: the note's tag set (mirrors the note_tags pivot rows)
- attachments: embedded attachment metadata (JSON strings)
"""

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from models.attachment import AttachmentMeta

NoteFormat = Literal["text", "doodle"]
RevisionCause = Literal["manual", "ai", "collab"]


class NoteCreate(BaseModel):
    """Schema for creating a new note."""
    title: str = "Untitled"
    content: str = ""
    format: NoteFormat = "text"
    tags: List[str] = []
    is_public: bool = False
    status: str = "active"


class NoteUpdate(BaseModel):
    """Schema for updating a note. Omitted fields are left unchanged."""
    title: Optional[str] = None
    content: Optional[str] = None
    format: Optional[NoteFormat] = None
    tags: Optional[List[str]] = None
    is_public: Optional[bool] = None
    status: Optional[str] = None
    # Autosave updates only get a revision when the change is significant
    autosave: bool = False
    cause: Optional[RevisionCause] = None


class NoteResponse(BaseModel):
    """Note data returned in API responses."""
    id: str
    owner_id: Optional[str]
    title: str
    content: str
    format: str
    tags: List[str]
    attachments: List[AttachmentMeta] = []
    is_public: bool
    status: str
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class SyncErrorResponse(BaseModel):
    step: str
    target: Optional[str] = None
    message: str


class NoteMutationResponse(BaseModel):
    """A note plus any best-effort side effects that failed."""
    note: NoteResponse
    sync_errors: List[SyncErrorResponse] = Field(default_factory=list, serialization_alias="syncErrors")


class NotePageResponse(BaseModel):
    notes: List[NoteResponse]
    next_cursor: Optional[str] = None
    has_more: bool = False
