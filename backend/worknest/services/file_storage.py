"""Attachment binary storage.

Only attachment metadata lives in the database; the bytes go through a
`FileStorage`. The default implementation writes below `settings.upload_dir`,
which `worknest.main` serves at `/uploads`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol
from uuid import uuid4

from worknest.core.config import settings
from worknest.core.logging import get_logger

if TYPE_CHECKING:
    from uuid import UUID

logger = get_logger(__name__)
UPLOADS_URL_PREFIX = "/uploads"


class StorageError(Exception):
    """Raised when the storage backend cannot store or remove an object."""


@dataclass(frozen=True)
class StoredFile:
    filename: str
    storage_key: str
    url: str


class FileStorage(Protocol):
    async def save(self, *, task_id: UUID, original_name: str, data: bytes) -> StoredFile: ...

    async def delete(self, storage_key: str) -> None: ...


class LocalFileStorage:
    """Store attachments on the local filesystem, one directory per task."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root or settings.upload_dir)

    def _path_for(self, storage_key: str) -> Path:
        path = (self.root / storage_key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"storage key escapes upload root: {storage_key}")
        return path

    async def save(self, *, task_id: UUID, original_name: str, data: bytes) -> StoredFile:
        suffix = Path(original_name).suffix.lower()
        filename = f"{uuid4().hex}{suffix}"
        storage_key = f"{task_id}/{filename}"
        path = self._path_for(storage_key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        logger.info("storage.saved", extra={"storage_key": storage_key, "size": len(data)})
        return StoredFile(
            filename=filename,
            storage_key=storage_key,
            url=f"{UPLOADS_URL_PREFIX}/{storage_key}",
        )

    async def delete(self, storage_key: str) -> None:
        path = self._path_for(storage_key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        logger.info("storage.deleted", extra={"storage_key": storage_key})


_storage: FileStorage | None = None


def get_file_storage() -> FileStorage:
    """Return the process-wide storage backend (a FastAPI dependency)."""
    global _storage
    if _storage is None:
        _storage = LocalFileStorage()
    return _storage
