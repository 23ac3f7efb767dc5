"""
Per-notification pipeline.

handle() turns one ChangeEvent into at most one stored object:

    token -> enrichment lookup -> derived filename -> fetch -> upload

A failed fetch or upload ends the run after logging. Nothing raised inside a
run reaches the subscription loop, so one bad event cannot tear down the
shared LISTEN connection.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Optional, Protocol

from ..errors import ImageFetchError, ImageUploadError
from ..logging_setup import LogContext
from ..models import ChangeEvent, SessionRecord, UploadRequest
from .fetcher import build_image_url
from .naming import DEFAULT_FILE_TOKEN, derive_filename, extract_file_token

logger = logging.getLogger(__name__)


class SessionLookup(Protocol):
    async def lookup(self, path: str) -> Optional[SessionRecord]: ...


class ByteFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


class Uploader(Protocol):
    async def upload(self, request: UploadRequest) -> str: ...


class ImageEventHandler:
    """Drives one notification through lookup, naming, fetch and upload."""

    def __init__(
        self,
        lookup: SessionLookup,
        fetcher: ByteFetcher,
        uploader: Uploader,
        api_base_url: str,
        destination_folder: str,
    ):
        self._lookup = lookup
        self._fetcher = fetcher
        self._uploader = uploader
        self._api_base_url = api_base_url
        self._destination_folder = destination_folder

    async def resolve_filename(self, payload: str) -> str:
        original_token = extract_file_token(payload)
        session = await self._lookup.lookup(payload)
        filename = derive_filename(original_token, session) or DEFAULT_FILE_TOKEN
        if session is None:
            logger.info("Using original name %s", filename)
        else:
            logger.info("Derived name %s from session %s", filename, session.session_id)
        return filename

    async def handle(self, event: ChangeEvent) -> Optional[str]:
        """
        Process one notification. Returns the stored object id, or None when
        the run ended early. Never raises except on cancellation.
        """
        payload = event.payload or ""
        with LogContext(run_id=uuid.uuid4(), payload=payload, channel=event.channel):
            started = time.perf_counter()
            try:
                return await self._run(payload)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error processing %s", payload)
                return None
            finally:
                logger.debug(
                    "Run finished",
                    extra={"duration_ms": round((time.perf_counter() - started) * 1000, 2)},
                )

    async def _run(self, payload: str) -> Optional[str]:
        filename = await self.resolve_filename(payload)
        url = build_image_url(self._api_base_url, payload)
        logger.info("New image: %s, URL: %s", filename, url)

        try:
            content = await self._fetcher.fetch(url)
        except ImageFetchError as exc:
            logger.error(
                "Error fetching %s: %s",
                url,
                exc,
                extra={"url": url, "status_code": exc.status_code, "status": "fetch_failed"},
            )
            return None
        logger.info("Image fetched successfully: %s (%d bytes)", filename, len(content))

        request = UploadRequest(
            content=content,
            filename=filename,
            destination_folder=self._destination_folder,
        )
        try:
            object_id = await self._uploader.upload(request)
        except ImageUploadError as exc:
            logger.error(
                "Error uploading %s: %s",
                filename,
                exc,
                exc_info=True,
                extra={"stored_name": filename, "status": "upload_failed"},
            )
            return None

        logger.info(
            "Relayed %s as %s",
            payload,
            filename,
            extra={"stored_name": filename, "object_id": object_id, "status": "success"},
        )
        return object_id
