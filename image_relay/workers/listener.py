"""
LISTEN subscription and per-notification dispatch.

The listener owns one autocommit connection for the life of the process. Each
notification becomes its own asyncio task, so a slow run never delays delivery
of the next notification and runs may overlap freely.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Optional, Protocol

import psycopg

from ..db import open_listen_connection, parse_dsn_for_logging
from ..errors import SubscriptionError
from ..models import ChangeEvent

logger = logging.getLogger(__name__)


class EventHandler(Protocol):
    async def handle(self, event: ChangeEvent) -> Any: ...


class NotificationListener:
    """Subscribe to one Postgres channel and fan notifications out to a handler."""

    def __init__(self, dsn: str, channel: str, handler: EventHandler):
        self._dsn = dsn
        self._channel = channel
        self._handler = handler
        self._conn: Optional[psycopg.AsyncConnection] = None
        self._task: Optional[asyncio.Task] = None
        # Strong references only; finished tasks remove themselves.
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> asyncio.Task:
        """
        Connect, LISTEN, and start the dispatch loop.

        Returns the running dispatch task. It only finishes if the connection
        is lost or stop() is called.

        Raises:
            SubscriptionError: connection or LISTEN failed
        """
        if self._task is not None:
            return self._task

        dsn_info = parse_dsn_for_logging(self._dsn)
        logger.info(
            "Attempting to connect to PostgreSQL (host=%s, dbname=%s, user=%s)",
            dsn_info.get("host"),
            dsn_info.get("dbname"),
            dsn_info.get("user"),
        )
        try:
            self._conn = await open_listen_connection(self._dsn, self._channel)
        except (psycopg.Error, OSError) as exc:
            raise SubscriptionError(f"Could not LISTEN on {self._channel}: {exc}") from exc
        logger.info("LISTEN %s set up successfully", self._channel)

        self._task = asyncio.create_task(self._dispatch_loop(self._conn), name=f"listen:{self._channel}")
        return self._task

    async def _dispatch_loop(self, conn: psycopg.AsyncConnection) -> None:
        logger.info("Listening for image events on %s", self._channel)
        async for notify in conn.notifies():
            self.dispatch(ChangeEvent(channel=notify.channel, payload=notify.payload))

    def dispatch(self, event: ChangeEvent) -> asyncio.Task:
        """Schedule one handler run without waiting for it."""
        logger.info("Received notification: %s, Payload: %s", event.channel, event.payload)
        task = asyncio.create_task(self._handler.handle(event))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def stop(self) -> None:
        """Cancel the dispatch loop and any in-flight runs, then close the connection."""
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._task = None

        pending = list(self._in_flight)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.info("Closed LISTEN connection for %s", self._channel)
