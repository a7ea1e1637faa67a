"""Filesystem-backed blob store.

Files live under a root directory; keys are relative paths
(``{folder}/{uuid}{ext}``) and public URLs are resolved against a base URL,
by default the image proxy route.
"""

import asyncio
import json
from pathlib import Path, PurePosixPath
from uuid import uuid4

import structlog

from img2img.core.config import Settings
from img2img.services.exceptions import StorageError, StorageNotFoundError, StorageUploadError
from img2img.services.storage.base import StoredFile, UploadResult

logger = structlog.get_logger(__name__)

META_SUFFIX = ".meta.json"


class LocalStorageProvider:
    """Store blobs on local disk with a sidecar file holding the content type."""

    provider_name = "local"

    def __init__(self, root: str | Path, public_base_url: str):
        """Initialize local storage.

        Args:
            root: Directory holding all blobs (created if missing)
            public_base_url: Base URL that serves keys, e.g. http://host/api/img2img/image
        """
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalStorageProvider":
        return cls(settings.storage_root, settings.storage_public_url)

    def _path_for(self, key: str) -> Path:
        """Resolve key to a path inside root.

        Raises:
            StorageError: If the key is empty or escapes the storage root
        """
        if not key or PurePosixPath(key).is_absolute():
            raise StorageError(f"Invalid storage key: {key!r}")
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root):
            raise StorageError(f"Invalid storage key: {key!r}")
        return path

    async def upload_file(
        self, data: bytes, filename: str, content_type: str, folder: str
    ) -> UploadResult:
        """Write bytes under folder with a fresh unique name keeping the file extension.

        Raises:
            StorageUploadError: If the file can't be written
        """
        extension = PurePosixPath(filename).suffix.lower()
        key = f"{folder.strip('/')}/{uuid4()}{extension}"
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            path.with_name(path.name + META_SUFFIX).write_text(
                json.dumps({"content_type": content_type, "filename": filename})
            )

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageUploadError(f"Failed to store {key}: {e}") from e

        logger.debug("storage.uploaded", key=key, size=len(data), content_type=content_type)
        return UploadResult(key=key, url=self.get_public_url(key))

    async def get_file(self, key: str) -> StoredFile:
        """Read a stored blob.

        Raises:
            StorageNotFoundError: If no blob exists for key
        """
        path = self._path_for(key)

        def _read() -> StoredFile:
            if key.endswith(META_SUFFIX) or not path.is_file():
                raise StorageNotFoundError(key)
            meta_path = path.with_name(path.name + META_SUFFIX)
            content_type = "application/octet-stream"
            if meta_path.is_file():
                content_type = json.loads(meta_path.read_text()).get("content_type", content_type)
            return StoredFile(data=path.read_bytes(), content_type=content_type)

        return await asyncio.to_thread(_read)

    async def delete_file(self, key: str) -> None:
        """Delete a blob and its sidecar; missing files are ignored."""
        path = self._path_for(key)

        def _delete() -> None:
            path.unlink(missing_ok=True)
            path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)

        await asyncio.to_thread(_delete)

    def get_public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"
