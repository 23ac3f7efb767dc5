"""
Supabase Storage uploads.

Objects are written to ``{destination_folder}/{filename}`` inside the
configured bucket. The Supabase client is synchronous, so uploads run in a
worker thread and a slow upload only holds up its own run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import ImageUploadError
from ..models import UploadRequest
from .naming import DEFAULT_FILE_TOKEN

logger = logging.getLogger(__name__)


def storage_path(destination_folder: str, filename: str) -> str:
    folder = destination_folder.strip("/")
    return f"{folder}/{filename}" if folder else filename


def _object_id(response: Any, fallback: str) -> str:
    for attr in ("full_path", "fully_qualified_path", "path"):
        value = getattr(response, attr, None)
        if isinstance(value, str) and value:
            return value
    if isinstance(response, dict):
        for key in ("Key", "key", "path"):
            value = response.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


class StorageUploader:
    """Store UploadRequests in one Supabase Storage bucket."""

    def __init__(self, client: Any, bucket: str):
        self._client = client
        self._bucket = bucket

    async def upload(self, request: UploadRequest) -> str:
        """
        Upload ``request`` and return the stored object identifier.

        Raises:
            ImageUploadError: the storage backend rejected the upload
        """
        filename = request.filename
        if not filename:
            logger.warning("Filename is empty. Using a default filename '%s'", DEFAULT_FILE_TOKEN)
            filename = DEFAULT_FILE_TOKEN

        path = storage_path(request.destination_folder, filename)
        try:
            response = await asyncio.to_thread(self._upload_sync, path, request)
        except Exception as exc:
            raise ImageUploadError(
                filename,
                request.destination_folder,
                f"Failed to upload {path} to bucket {self._bucket}: {exc}",
            ) from exc

        object_id = _object_id(response, path)
        logger.info(
            "Uploaded %s to storage: ID %s",
            filename,
            object_id,
            extra={"stored_name": filename, "object_id": object_id, "bytes": request.size},
        )
        return object_id

    def _upload_sync(self, path: str, request: UploadRequest) -> Any:
        return self._client.storage.from_(self._bucket).upload(
            path=path,
            file=request.content,
            file_options={"content-type": request.content_type, "upsert": "false"},
        )
