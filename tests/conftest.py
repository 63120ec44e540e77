import asyncio
from io import BytesIO
from typing import Dict, List, Optional

import pytest
from PIL import Image

from coloringbook.db.job_store import InMemoryJobStore
from coloringbook.errors import UpstreamGenerationError
from coloringbook.generation.client import ImageGenerator
from coloringbook.jobs.models import Provider
from coloringbook.storage.file_store import LocalFileStore


def make_png(width: int = 64, height: int = 48, mode: str = "RGB") -> bytes:
    color = (255, 255, 255, 0) if mode == "RGBA" else "white"
    buffer = BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeGenerator(ImageGenerator):
    """Returns deterministic URLs; fails for any prompt containing a listed fragment."""

    def __init__(self, fail_on: Optional[List[str]] = None, delay: float = 0.0):
        self.fail_on = list(fail_on or [])
        self.delay = delay
        self.calls: List[str] = []
        self.urls: Dict[str, str] = {}
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def providers(self):
        return ["openai"]

    async def generate(self, image_url, prompt, provider: Optional[Provider] = None, detail=None) -> str:
        self.calls.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        for fragment in self.fail_on:
            if fragment in prompt:
                raise UpstreamGenerationError(f"OpenAI API error: refused {fragment}")
        for scene, url in self.urls.items():
            if scene in prompt:
                return url
        return f"https://cdn.test/page-{len(self.calls)}.png"


class FakeImageSource:
    """Stands in for ImageFetcher: serves bytes per URL, raises for unknown ones."""

    def __init__(self, images: Dict[str, bytes]):
        self.images = images
        self.calls: List[str] = []

    async def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        await asyncio.sleep(0)
        if url not in self.images:
            raise RuntimeError(f"Failed to fetch image {url}: 404 Not Found")
        return self.images[url]


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(str(tmp_path / "files"), "http://testserver")


@pytest.fixture
def png_bytes():
    return make_png()
