"""
Image Relay - Database Connectivity

Two kinds of connection are used:

- one dedicated autocommit connection that holds the LISTEN subscription
- a small AsyncConnectionPool for the per-run enrichment queries

A psycopg connection that is iterating notifies() cannot serve queries at the
same time, which is why enrichment does not share the LISTEN connection.
"""

from __future__ import annotations

import logging

import psycopg
from psycopg import sql
from psycopg.conninfo import conninfo_to_dict
from psycopg_pool import AsyncConnectionPool

from . import __version__
from .core_config import Settings

logger = logging.getLogger(__name__)


def _application_name(role: str) -> str:
    safe_version = __version__.replace(".", "_").replace("-", "_")
    return f"image_relay_{role}_v{safe_version}"


def parse_dsn_for_logging(dsn: str) -> dict[str, str | None]:
    """
    Parse a URL or key=value DSN and extract loggable components (no password).

    Returns dict with host, port, dbname, user, sslmode.
    """
    try:
        parts = conninfo_to_dict(dsn)
    except psycopg.Error as e:
        return {"error": str(e)}

    host = parts.get("host") or parts.get("hostaddr")
    return {
        "host": str(host) if host else None,
        "port": str(parts.get("port") or "5432"),
        "dbname": parts.get("dbname"),
        "user": parts.get("user"),
        "sslmode": parts.get("sslmode") or "not_set",
    }


async def open_listen_connection(dsn: str, channel: str) -> psycopg.AsyncConnection:
    """
    Open an autocommit connection and register LISTEN on ``channel``.

    Autocommit is required: notifications are only delivered outside a
    transaction block.
    """
    conn = await psycopg.AsyncConnection.connect(
        dsn,
        autocommit=True,
        application_name=_application_name("listener"),
    )
    try:
        await conn.execute(sql.SQL("LISTEN {}").format(sql.Identifier(channel)))
    except BaseException:
        await conn.close()
        raise
    return conn


async def open_query_pool(settings: Settings) -> AsyncConnectionPool:
    """Open the pool used for enrichment lookups."""
    pool = AsyncConnectionPool(
        settings.supabase_db_url,
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
        kwargs={"application_name": _application_name("lookup"), "autocommit": True},
        open=False,
    )
    await pool.open()
    logger.info(
        "Enrichment query pool opened (min=%s, max=%s)",
        settings.DB_POOL_MIN_SIZE,
        settings.DB_POOL_MAX_SIZE,
    )
    return pool
