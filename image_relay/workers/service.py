"""
ImageRelayService - the one object that owns the worker's resources.

Lifecycle: start() opens the storage client, query pool, HTTP client and LISTEN
connection, in that order. In normal operation nothing is closed; close() runs
only on shutdown signals, on fatal errors, and in tests.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from psycopg_pool import AsyncConnectionPool

from ..core_config import Settings
from ..db import open_query_pool
from ..errors import ConfigurationError
from ..supabase_client import create_supabase_client
from .enrichment import EnrichmentLookup
from .fetcher import ImageFetcher
from .handlers import ImageEventHandler
from .listener import NotificationListener
from .storage import StorageUploader

logger = logging.getLogger(__name__)


class ImageRelayService:
    def __init__(self, settings: Settings, supabase_client: Any = None):
        self._settings = settings
        self._supabase_client = supabase_client
        self._pool: Optional[AsyncConnectionPool] = None
        self._fetcher: Optional[ImageFetcher] = None
        self._listener: Optional[NotificationListener] = None
        self._handler: Optional[ImageEventHandler] = None

    @property
    def handler(self) -> Optional[ImageEventHandler]:
        return self._handler

    @property
    def listener(self) -> Optional[NotificationListener]:
        return self._listener

    def _storage_client(self) -> Any:
        if self._supabase_client is not None:
            return self._supabase_client
        try:
            return create_supabase_client(self._settings)
        except Exception as exc:
            # Bad credentials or a malformed SUPABASE_URL (SupabaseException).
            raise ConfigurationError(f"Could not create Supabase client: {exc}") from exc

    async def start(self) -> asyncio.Task:
        """
        Build the pipeline and start listening.

        Raises:
            ConfigurationError: storage credentials are unusable
            SubscriptionError: the LISTEN connection could not be set up
        """
        settings = self._settings
        uploader = StorageUploader(self._storage_client(), settings.storage_bucket)

        self._pool = await open_query_pool(settings)
        self._fetcher = ImageFetcher.create(settings.FETCH_TIMEOUT_SECONDS)
        self._handler = ImageEventHandler(
            lookup=EnrichmentLookup(self._pool, settings.enrichment_shape),
            fetcher=self._fetcher,
            uploader=uploader,
            api_base_url=settings.api_base_url,
            destination_folder=settings.destination_folder,
        )
        self._listener = NotificationListener(
            settings.supabase_db_url,
            settings.notify_channel,
            self._handler,
        )
        return await self._listener.start()

    async def close(self) -> None:
        if self._listener is not None:
            await self._listener.stop()
            self._listener = None
        if self._fetcher is not None:
            await self._fetcher.aclose()
            self._fetcher = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
        logger.info("Image relay service closed")
