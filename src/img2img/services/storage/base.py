"""Blob store contract used by the task routes and the generation orchestrator."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class UploadResult:
    """Stored blob reference."""

    key: str
    url: str


@dataclass(frozen=True)
class StoredFile:
    """Blob contents with its content type."""

    data: bytes
    content_type: str


class StorageProvider(Protocol):
    """Blob store operations.

    Keys are opaque, slash-separated paths chosen by the provider.
    """

    provider_name: str

    async def upload_file(
        self, data: bytes, filename: str, content_type: str, folder: str
    ) -> UploadResult: ...

    async def get_file(self, key: str) -> StoredFile: ...

    async def delete_file(self, key: str) -> None: ...

    def get_public_url(self, key: str) -> str: ...
