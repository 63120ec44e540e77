"""Image-generation clients that turn a photo + prompt into a coloring page URL.

Two provider backends are supported:
  openai  - Responses API with the image_generation tool (openai SDK)
  gemini  - Gemini image models over the REST generateContent endpoint (httpx)

ColoringPageGenerator downloads the source image, asks the selected backend
for a new image, uploads the result to file storage and returns its public URL.
"""

import base64
import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Dict, Optional

import httpx
from openai import AsyncOpenAI

from coloringbook.config import Settings
from coloringbook.errors import PersistenceError, UpstreamGenerationError
from coloringbook.io.image_fetch import ImageFetcher
from coloringbook.jobs.models import Provider
from coloringbook.storage.file_store import FileStore

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# Detail hint forwarded to the vision input: "low" | "auto" | "high"
DEFAULT_DETAIL = "high"


class ImageBackend(ABC):
    """One provider's image-to-image call. Returns raw image bytes."""

    label: str = "Image"

    @abstractmethod
    async def render(self, image_b64: str, mime_type: str, prompt: str, detail: str) -> bytes:
        ...


class OpenAIImageBackend(ImageBackend):
    label = "OpenAI"

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o"):
        self._client = client
        self._model = model

    async def render(self, image_b64: str, mime_type: str, prompt: str, detail: str) -> bytes:
        response = await self._client.responses.create(
            model=self._model,
            input=[
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": prompt},
                        {
                            "type": "input_image",
                            "image_url": f"data:{mime_type};base64,{image_b64}",
                            "detail": detail,
                        },
                    ],
                }
            ],
            tools=[{"type": "image_generation"}],
        )

        images = [
            getattr(output, "result", None)
            for output in response.output
            if output.type == "image_generation_call"
        ]
        logger.debug("OpenAI returned %d output(s), %d image call(s)", len(response.output), len(images))

        if not images:
            raise UpstreamGenerationError("No image generated in response")
        if not images[0]:
            raise UpstreamGenerationError("Generated image data is empty")
        return base64.b64decode(images[0])


class GeminiImageBackend(ImageBackend):
    label = "Gemini"

    def __init__(self, client: httpx.AsyncClient, api_key: str, model: str = "gemini-2.5-flash-image"):
        self._client = client
        self._api_key = api_key
        self._model = model

    async def render(self, image_b64: str, mime_type: str, prompt: str, detail: str) -> bytes:
        response = await self._client.post(
            f"{GEMINI_API_BASE}/models/{self._model}:generateContent",
            headers={"x-goog-api-key": self._api_key},
            json={
                "contents": [
                    {
                        "parts": [
                            {"text": prompt},
                            {"inlineData": {"mimeType": mime_type, "data": image_b64}},
                        ]
                    }
                ],
                "generationConfig": {"responseModalities": ["IMAGE"]},
            },
        )
        if response.status_code != 200:
            raise UpstreamGenerationError(
                f"Gemini API error: {response.status_code} {response.text[:300]}"
            )

        payload = response.json()
        for candidate in payload.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                inline = part.get("inlineData") or part.get("inline_data")
                if inline and inline.get("data"):
                    return base64.b64decode(inline["data"])

        raise UpstreamGenerationError("No image generated in response")


class ImageGenerator(ABC):
    """Interface consumed by the job runners."""

    @abstractmethod
    async def generate(
        self,
        image_url: str,
        prompt: str,
        provider: Optional[Provider] = None,
        detail: Optional[str] = None,
    ) -> str:
        """Return the public URL of a newly generated image."""
        ...


class ColoringPageGenerator(ImageGenerator):
    def __init__(
        self,
        backends: Dict[Provider, ImageBackend],
        file_store: FileStore,
        fetcher: ImageFetcher,
        default_provider: Provider = Provider.OPENAI,
    ):
        self._backends = backends
        self._file_store = file_store
        self._fetcher = fetcher
        self._default_provider = default_provider

    @property
    def providers(self):
        return sorted(provider.value for provider in self._backends)

    async def generate(
        self,
        image_url: str,
        prompt: str,
        provider: Optional[Provider] = None,
        detail: Optional[str] = None,
    ) -> str:
        provider = provider or self._default_provider
        backend = self._backends.get(provider)
        if backend is None:
            raise UpstreamGenerationError(f"Image provider '{provider.value}' is not configured")

        logger.info("Generating coloring page with %s for %s", provider.value, image_url)
        try:
            source = await self._fetcher.fetch(image_url)
            image_b64 = base64.b64encode(source.data).decode("ascii")
            image_bytes = await backend.render(
                image_b64, source.content_type, prompt, detail or DEFAULT_DETAIL
            )
        except UpstreamGenerationError:
            raise
        except Exception as exc:
            raise UpstreamGenerationError(f"{backend.label} API error: {exc}") from exc

        path = f"coloring-pages/coloring-page-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}.png"
        try:
            await self._file_store.upload(path, image_bytes, "image/png")
        except PersistenceError as exc:
            raise UpstreamGenerationError(str(exc)) from exc

        public_url = self._file_store.get_public_url(path)
        logger.info("Coloring page uploaded: %s", public_url)
        return public_url


def build_generator(
    settings: Settings,
    file_store: FileStore,
    http_client: httpx.AsyncClient,
    fetcher: ImageFetcher,
) -> ColoringPageGenerator:
    """Wire up every provider that has credentials configured."""
    backends: Dict[Provider, ImageBackend] = {}
    if settings.openai_api_key:
        openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key.strip(),
            timeout=settings.generation_timeout_seconds,
        )
        backends[Provider.OPENAI] = OpenAIImageBackend(openai_client, settings.openai_image_model)
    if settings.gemini_api_key:
        backends[Provider.GEMINI] = GeminiImageBackend(
            http_client, settings.gemini_api_key.strip(), settings.gemini_image_model
        )

    if not backends:
        logger.warning("No image provider credentials configured; generation calls will fail")

    default_provider = Provider(settings.default_provider)
    return ColoringPageGenerator(backends, file_store, fetcher, default_provider)
