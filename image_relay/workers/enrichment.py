"""
Session enrichment for new images.

Two point queries resolve an image path to the session that produced it:

    images.final_path -> images.session_id -> sessions.(name, style|email)

Any missing row or query failure yields None, which callers treat as "keep the
original file token". lookup() never raises.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from ..core_config import EnrichmentShape
from ..models import SessionRecord

logger = logging.getLogger(__name__)

IMAGE_SESSION_QUERY = "SELECT session_id FROM images WHERE final_path = %s LIMIT 1"

SESSION_QUERIES = {
    EnrichmentShape.STYLE: "SELECT name, style FROM sessions WHERE session_id = %s LIMIT 1",
    EnrichmentShape.EMAIL: "SELECT name, email FROM sessions WHERE session_id = %s LIMIT 1",
}


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected text column, got {type(value).__name__}")
    return value


class EnrichmentLookup:
    """Resolve a notification path to a SessionRecord using a query pool."""

    def __init__(self, pool: AsyncConnectionPool, shape: EnrichmentShape = EnrichmentShape.STYLE):
        self._pool = pool
        self._shape = EnrichmentShape(shape)

    @property
    def shape(self) -> EnrichmentShape:
        return self._shape

    async def lookup(self, path: str) -> Optional[SessionRecord]:
        try:
            return await self._lookup(path)
        except Exception:
            logger.warning(
                "Enrichment lookup failed for %s; falling back to original name",
                path,
                exc_info=True,
            )
            return None

    async def _lookup(self, path: str) -> Optional[SessionRecord]:
        async with self._pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(IMAGE_SESSION_QUERY, (path,))
                image_row = await cur.fetchone()
                if image_row is None:
                    logger.info("No image row for %s", path)
                    return None

                session_id = image_row["session_id"]
                if session_id is None:
                    logger.info("Image row for %s has no session_id", path)
                    return None

                await cur.execute(SESSION_QUERIES[self._shape], (session_id,))
                session_row = await cur.fetchone()
                if session_row is None:
                    logger.info("No session row for session_id=%s", session_id)
                    return None

        record = self._to_record(session_id, session_row)
        logger.debug("Resolved %s to session %s", path, session_id)
        return record

    def _to_record(self, session_id: Any, row: dict[str, Any]) -> SessionRecord:
        name = _optional_text(row.get("name"))
        if self._shape is EnrichmentShape.EMAIL:
            # The email column takes the place of the style tag.
            email = _optional_text(row.get("email"))
            return SessionRecord(
                session_id=session_id,
                display_name=name,
                style_tag=email,
                email=email,
            )
        return SessionRecord(
            session_id=session_id,
            display_name=name,
            style_tag=_optional_text(row.get("style")),
        )
