"""Download remote images over HTTP with a hard per-request timeout."""

from dataclasses import dataclass

import httpx

DEFAULT_FETCH_TIMEOUT = 15.0
DEFAULT_CONTENT_TYPE = "image/jpeg"


@dataclass
class FetchedImage:
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


class ImageFetcher:
    """Fetches image bytes by URL using a shared httpx.AsyncClient.

    Usage:
        fetcher = ImageFetcher(http_client, timeout=15.0)
        image = await fetcher.fetch("https://.../page.png")
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float = DEFAULT_FETCH_TIMEOUT):
        self._client = client
        self._timeout = timeout

    async def fetch(self, url: str) -> FetchedImage:
        response = await self._client.get(url, timeout=self._timeout, follow_redirects=True)
        response.raise_for_status()
        content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE)
        content_type = content_type.split(";")[0].strip() or DEFAULT_CONTENT_TYPE
        return FetchedImage(data=response.content, content_type=content_type)

    async def __call__(self, url: str) -> bytes:
        image = await self.fetch(url)
        return image.data
