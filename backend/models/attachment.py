"""
Attachment model definitions.

Attachments live in two places:
- AttachmentMeta: the compact form embedded (as JSON strings) in
  Note.attachments. Its presence there is what makes a blob "attached".
- AttachmentRecord: the richer row in the optional dedicated collection.
  When present it wins on metadata.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AttachmentMeta(BaseModel):
    """Embedded attachment metadata; id is the underlying blob id."""
    id: str
    name: str
    size: int = 0
    mime: Optional[str] = None
    createdAt: str = Field(default_factory=_now_iso)

    def serialize(self) -> str:
        return json.dumps(self.model_dump(), separators=(",", ":"))

    @classmethod
    def parse(cls, raw: Union[str, Dict[str, Any]]) -> Optional["AttachmentMeta"]:
        """Parse one embedded entry. Unreadable entries return None."""
        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
            if not isinstance(data, dict) or not data.get("id"):
                return None
            return cls(
                id=str(data["id"]),
                name=data.get("name") or "attachment",
                size=int(data.get("size") or 0),
                mime=data.get("mime"),
                createdAt=str(data.get("createdAt") or _now_iso()),
            )
        except (ValueError, TypeError):
            return None


class AttachmentRecord(BaseModel):
    """Row in the dedicated attachments collection."""
    id: Optional[str] = Field(None, alias="_id")
    noteId: str
    ownerId: str
    fileId: str
    filename: str
    mimetype: Optional[str] = None
    sizeBytes: int = 0
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(populate_by_name=True)


class SignedUrlRequest(BaseModel):
    """Optional body for minting a signed download URL."""
    ttl_seconds: Optional[int] = Field(None, gt=0)


class SignedUrlResponse(BaseModel):
    url: str
    expires_at: int
    ttl: int
