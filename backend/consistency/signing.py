"""
Signed attachment download URLs.

A token is HMAC-SHA256(secret, "{noteId}.{ownerId}.{fileId}.{exp}") in hex,
carried next to the plaintext parameters in the download URL. Nothing is
stored: verification recomputes the HMAC, so a leaked URL stays valid
until exp. Without a configured secret the feature is disabled rather
than failing.
"""

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union
from urllib.parse import urlencode

from config import Settings

DOWNLOAD_PATH = "/attachments/download"


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_at: int  # unix seconds
    ttl: int


@dataclass(frozen=True)
class Verification:
    valid: bool
    reason: Optional[str] = None


class AccessTokenSigner:
    """Issues and verifies signed download URLs.

    Args:
        secret: HMAC key; None or empty disables signing.
        default_ttl: TTL used when issue() gets no positive ttl.
        now: Clock returning unix seconds, injectable for tests.
    """

    def __init__(self, secret: Optional[str], default_ttl: int = 300,
                 now: Callable[[], float] = time.time):
        self._secret = secret.encode("utf-8") if secret else None
        self._default_ttl = default_ttl
        self._now = now

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessTokenSigner":
        return cls(settings.attachment_url_signing_secret, settings.attachment_url_ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._secret is not None

    def sign(self, note_id: str, owner_id: str, file_id: str, exp: int) -> Optional[str]:
        if self._secret is None:
            return None
        message = f"{note_id}.{owner_id}.{file_id}.{exp}".encode("utf-8")
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    def issue(self, note_id: str, owner_id: str, file_id: str,
              ttl_seconds: Optional[int] = None) -> Optional[SignedUrl]:
        """Mint a download URL, or None when signing is disabled."""
        if not self.enabled:
            return None
        ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else self._default_ttl
        exp = int(self._now()) + ttl
        sig = self.sign(note_id, owner_id, file_id, exp)
        query = urlencode({"noteId": note_id, "ownerId": owner_id, "fileId": file_id, "exp": exp, "sig": sig})
        return SignedUrl(url=f"{DOWNLOAD_PATH}?{query}", expires_at=exp, ttl=ttl)

    def verify(self, note_id: str, owner_id: str, file_id: str,
               exp: Union[int, str, None], sig: Optional[str]) -> Verification:
        if not self.enabled:
            return Verification(False, "signing_disabled")
        try:
            exp_value = int(exp)
        except (TypeError, ValueError):
            return Verification(False, "invalid_exp")
        if exp_value <= 0:
            return Verification(False, "invalid_exp")
        if exp_value < int(self._now()):
            return Verification(False, "expired")
        expected = self.sign(note_id, owner_id, file_id, exp_value)
        if expected is None:
            return Verification(False, "signature_unavailable")
        if not hmac.compare_digest(expected.encode("utf-8"), (sig or "").encode("utf-8")):
            return Verification(False, "invalid_signature")
        return Verification(True)
