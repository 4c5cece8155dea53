"""File storage collaborator clients."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

import httpx

from session_service.core.errors import ExternalServiceError
from session_service.class_sessions.models import Material

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileUpload:
    """A file to attach to a session."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"
    description: str = ""


class FileStorageClient(Protocol):
    """Port for the file storage service."""

    async def upload_multiple_files(self, files: List[FileUpload]) -> List[Material]:
        """Upload files and return their material references."""

    async def delete_multiple_files(self, ids: List[str]) -> None:
        """Delete stored files by id."""


class InMemoryFileStorageClient:
    """File storage kept in process memory, for development and tests."""

    def __init__(self):
        self.files: Dict[str, FileUpload] = {}
        self.deleted_ids: List[str] = []

    async def upload_multiple_files(self, files: List[FileUpload]) -> List[Material]:
        materials = []
        for upload in files:
            file_id = uuid.uuid4().hex
            self.files[file_id] = upload
            materials.append(
                Material(id=file_id, description=upload.description, title=upload.filename)
            )
        return materials

    async def delete_multiple_files(self, ids: List[str]) -> None:
        for file_id in ids:
            self.files.pop(file_id, None)
            self.deleted_ids.append(file_id)


class HttpFileStorageClient:
    """File storage service reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def upload_multiple_files(self, files: List[FileUpload]) -> List[Material]:
        multipart = [
            ("files", (f.filename, f.content, f.content_type)) for f in files
        ]
        try:
            resp = await self._client.post("/files/upload-multiple", files=multipart)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"File upload failed: {exc}") from exc

        results = resp.json()
        return [
            Material(
                id=item["id"],
                description=files[i].description if i < len(files) else "",
                title=item.get("title"),
                url=item.get("url"),
            )
            for i, item in enumerate(results)
        ]

    async def delete_multiple_files(self, ids: List[str]) -> None:
        if not ids:
            return
        try:
            resp = await self._client.post("/files/delete-multiple", json={"ids": ids})
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"File deletion failed: {exc}") from exc
        logger.info(f"Deleted {len(ids)} file(s) from storage")

    async def aclose(self) -> None:
        await self._client.aclose()
