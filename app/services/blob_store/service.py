"""Blob storage for cached place photos.

``LocalBlobStore`` writes under a directory on disk and builds public URLs from
a configured base URL (the app mounts the directory as static files). File
I/O runs in a worker thread so it never blocks the event loop.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)


class BlobStore(ABC):
    """Key/value store for binary objects addressed by relative path."""

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        pass

    @abstractmethod
    def public_url(self, path: str) -> str:
        pass


class LocalBlobStore(BlobStore):
    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self._root = Path(root).resolve()
        self._base_url = public_base_url.rstrip("/")

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        target = (self._root / path).resolve()
        if target != self._root and self._root not in target.parents:
            raise ValueError(f"Blob path escapes the store: {path}")
        return target

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def put(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        target = self._resolve(path)

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            tmp = target.with_suffix(target.suffix + ".part")
            tmp.write_bytes(data)
            tmp.replace(target)

        await asyncio.to_thread(write)
        logger.info(f"[BLOB] Stored {path} ({len(data)} bytes, {content_type})")

    def public_url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"
