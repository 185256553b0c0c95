"""Tag and revision response models."""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class TagResponse(BaseModel):
    id: str
    name: str
    usage_count: int = 0
    created_at: Optional[datetime] = None


class RevisionResponse(BaseModel):
    id: str
    note_id: str
    revision_number: int
    owner_id: Optional[str]
    title: Optional[str]
    content: Optional[str]
    diff: Optional[str]
    diff_format: Optional[str]
    full_snapshot: bool
    cause: str
    created_at: datetime
