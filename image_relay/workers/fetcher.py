from __future__ import annotations

import logging

import httpx

from ..errors import ImageFetchError

logger = logging.getLogger(__name__)


def build_image_url(base_url: str, payload_path: str) -> str:
    """Concatenate the configured base URL with the raw notification path."""
    return f"{base_url}{payload_path}"


class ImageFetcher:
    """Download image bytes from the internal API. One attempt, no retries."""

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    @classmethod
    def create(cls, timeout: float | None = None) -> "ImageFetcher":
        return cls(httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise ImageFetchError(url, f"Failed to fetch image: {exc}") from exc

        if not response.is_success:
            raise ImageFetchError(
                url,
                f"Failed to fetch image: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        content = response.content
        logger.debug("Fetched %d bytes from %s", len(content), url)
        return content
