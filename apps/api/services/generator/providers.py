"""Generator provider abstraction."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import OpenAI

from config import settings
from services.generator.types import (
    CancellationToken,
    GenerationOutput,
    GenerationRequest,
    GeneratorUnavailableError,
    ProgressCallback,
)

logger = logging.getLogger(__name__)


class BaseGenerator(ABC):
    provider_name: str

    @abstractmethod
    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel_token: CancellationToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationOutput:
        raise NotImplementedError


class UnconfiguredGenerator(BaseGenerator):
    """Fails deterministically until a generator backend is configured."""

    provider_name = "unconfigured"

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel_token: CancellationToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationOutput:
        raise GeneratorUnavailableError(
            "No image generator is configured. Set OPENAI_API_KEY to enable generation."
        )


class OpenAIImageGenerator(BaseGenerator):
    """Generates one image per prompt with the OpenAI Images API."""

    provider_name = "openai"

    def __init__(self, api_key: str, *, model: str, size: str):
        self.client = OpenAI(api_key=api_key)
        self.model = model
        self.size = size

    def _generate_one(self, prompt: str) -> str:
        response = self.client.images.generate(model=self.model, prompt=prompt, size=self.size, n=1)
        item = response.data[0]
        if getattr(item, "url", None):
            return item.url
        return f"data:image/png;base64,{item.b64_json}"

    async def generate(
        self,
        request: GenerationRequest,
        *,
        cancel_token: CancellationToken,
        on_progress: Optional[ProgressCallback] = None,
    ) -> GenerationOutput:
        total = request.expected_images
        urls: List[str] = []
        for prompt in request.prompts:
            await cancel_token.raise_if_canceled()
            urls.append(await asyncio.to_thread(self._generate_one, prompt))
            if on_progress is not None:
                await on_progress(len(urls), total)
        return GenerationOutput(image_urls=urls, provider=self.provider_name, metadata={"model": self.model})


def get_generator() -> BaseGenerator:
    api_key = (settings.OPENAI_API_KEY or "").strip()
    if not api_key or "your_" in api_key or api_key == "test-key":
        return UnconfiguredGenerator()
    return OpenAIImageGenerator(api_key, model=settings.OPENAI_IMAGE_MODEL, size=settings.OPENAI_IMAGE_SIZE)
