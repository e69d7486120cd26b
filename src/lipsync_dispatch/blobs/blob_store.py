"""Blob storage for inputs of jobs that have to wait for a worker."""

from __future__ import annotations

import asyncio
import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from lipsync_dispatch.main.exceptions import BlobNotFoundError
from lipsync_dispatch.main.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class Blob:
    name: str
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.data)


def file_name_from_reference(reference: str, fallback: str) -> str:
    """Last path segment of a blob URL, or ``fallback`` when there is none."""
    try:
        parts = [part for part in urlparse(reference).path.split("/") if part]
    except ValueError:
        return fallback
    return parts[-1] if parts else fallback


class BlobStore(ABC):
    """Interface used by the dispatch service and the sweep."""

    @abstractmethod
    async def upload(self, blob: Blob) -> str:
        """Store ``blob`` and return its reference."""
        ...

    @abstractmethod
    async def fetch(self, reference: str) -> Blob:
        """Load a previously uploaded blob.

        Raises:
            BlobNotFoundError: Nothing is stored under ``reference``.
        """
        ...

    @abstractmethod
    async def delete(self, reference: str) -> None:
        ...


class FilesystemBlobStore(BlobStore):
    """Stores blobs as files in one directory and hands out URL references.

    References look like ``{public_base_url}/{name}``; only the last path
    segment is used to locate the file again.
    """

    def __init__(self, root_dir: str | Path, public_base_url: str) -> None:
        self._root = Path(root_dir)
        self._public_base_url = public_base_url.rstrip("/")

    def _path_for(self, reference: str) -> Path:
        name = file_name_from_reference(reference, fallback="")
        # Never let a reference escape the storage directory
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise BlobNotFoundError(f"Invalid blob reference: {reference}")
        return self._root / name

    def reference_for(self, name: str) -> str:
        return f"{self._public_base_url}/{name}"

    async def upload(self, blob: Blob) -> str:
        path = self._path_for(self.reference_for(blob.name))

        def _write() -> None:
            self._root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(blob.data)

        await asyncio.to_thread(_write)
        logger.debug("Blob stored", extra={"blob": blob.name, "size": blob.size})
        return self.reference_for(blob.name)

    async def fetch(self, reference: str) -> Blob:
        path = self._path_for(reference)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Blob not found: {reference}") from exc

        content_type, _ = mimetypes.guess_type(path.name)
        return Blob(name=path.name, data=data, content_type=content_type or DEFAULT_CONTENT_TYPE)

    async def delete(self, reference: str) -> None:
        path = self._path_for(reference)
        await asyncio.to_thread(path.unlink, missing_ok=True)
