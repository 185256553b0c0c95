"""
Blob storage for attachment binaries.

Blobs are write-once, delete-once and scoped to the owner that uploaded
them. LocalBlobStorage keeps them on disk under <bucket>/<owner key>/<fileId>,
where the owner key is the sha256 hex of the owner id, so any id from a
token subject (auth0|..., user@example.com) maps to a safe folder name.
"""

import asyncio
import hashlib
import logging
import re
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from consistency.errors import MissingBucketConfigError

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[\w\-]+$")


def owner_key(owner_id: str) -> str:
    return hashlib.sha256(owner_id.encode("utf-8")).hexdigest()


class BlobStorage(ABC):

    @abstractmethod
    async def upload(self, owner_id: str, content: bytes) -> str:
        """Store content and return its blob id."""

    @abstractmethod
    async def read(self, owner_id: str, file_id: str) -> bytes:
        pass

    @abstractmethod
    async def delete(self, owner_id: str, file_id: str) -> bool:
        """Delete a blob. False if it was already gone."""


class LocalBlobStorage(BlobStorage):
    """Filesystem bucket. An empty bucket path is a configuration error."""

    def __init__(self, bucket_dir: Optional[str]):
        self._root = Path(bucket_dir) if bucket_dir else None

    def _path(self, owner_id: str, file_id: str) -> Path:
        if self._root is None:
            raise MissingBucketConfigError()
        if not _SAFE_ID.match(file_id):
            raise ValueError("Invalid blob id")
        path = self._root / owner_key(owner_id) / file_id
        if not path.resolve().is_relative_to(self._root.resolve()):
            raise ValueError("Invalid blob path")
        return path

    async def upload(self, owner_id: str, content: bytes) -> str:
        file_id = uuid.uuid4().hex
        path = self._path(owner_id, file_id)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        logger.info(f"Blob stored: {owner_id}/{file_id} ({len(content)} bytes)")
        return file_id

    async def read(self, owner_id: str, file_id: str) -> bytes:
        path = self._path(owner_id, file_id)
        return await asyncio.to_thread(path.read_bytes)

    async def delete(self, owner_id: str, file_id: str) -> bool:
        path = self._path(owner_id, file_id)

        def _unlink() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        return await asyncio.to_thread(_unlink)
