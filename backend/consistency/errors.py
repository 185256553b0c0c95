"""
Error taxonomy for the consistency layer.

Validation and authorization failures are raised to the caller and abort
the operation before any write. Best-effort side effects never raise;
see consistency.results.
"""

from typing import Any, Dict, Optional


class ConsistencyError(Exception):
    """Base class for errors surfaced by the consistency layer."""


class NoteNotFoundError(ConsistencyError):
    def __init__(self, note_id: str):
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class AccessDeniedError(ConsistencyError):
    """Owner/collaborator check failed. Deliberately carries no code."""


class InvalidCursorError(ConsistencyError):
    """A pagination cursor could not be decoded."""


class AttachmentError(ConsistencyError):
    """Attachment validation or configuration failure with a stable code."""

    code = "ATTACHMENT_ERROR"

    def __init__(self, message: str, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.payload}


class AttachmentSizeLimitError(AttachmentError):
    code = "ATTACHMENT_SIZE_LIMIT"

    def __init__(self, limit_mb: int):
        super().__init__(
            f"Attachment exceeds the {limit_mb} MB limit for your plan",
            {"limitMB": limit_mb, "limitBytes": limit_mb * 1024 * 1024},
        )


class UnsupportedMimeTypeError(AttachmentError):
    code = "UNSUPPORTED_MIME_TYPE"

    def __init__(self, mime: str, allowed_prefixes, allowed_types):
        super().__init__(
            f"Unsupported attachment type: {mime}",
            {
                "mime": mime,
                "allowedPrefixes": list(allowed_prefixes),
                "allowedTypes": sorted(allowed_types),
            },
        )


class MissingBucketConfigError(AttachmentError):
    code = "MISSING_BUCKET_CONFIG"

    def __init__(self):
        super().__init__("Attachment storage bucket is not configured")
