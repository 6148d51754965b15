"""
LiteLLM-backed image generation for storybook illustrations.
"""

from __future__ import annotations

import os
from typing import Any, Protocol

from litellm import aimage_generation

from doodlebook.common.config import resolve_llm_api_key

from .prompting import ScenePrompt


class ImageGenerator(Protocol):
    async def generate_image(
        self,
        prompt: ScenePrompt,
        *,
        reference_image: str | None = None,
    ) -> Any:
        ...


class LiteLLMImageGenerator:
    """
    Image generator for OpenAI-compatible image models routed through LiteLLM.

    Parameters
    ----------
    model:
        Image model name. Falls back to ``DOODLEBOOK_IMAGE_MODEL`` and then to
        ``gpt-image-1``.
    size / quality:
        Passed through to the provider unchanged.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        size: str = "1024x1024",
        quality: str = "low",
    ) -> None:
        self._api_key = resolve_llm_api_key(api_key)
        self._model = model or os.getenv("DOODLEBOOK_IMAGE_MODEL") or "gpt-image-1"
        self._size = size
        self._quality = quality

    @property
    def model(self) -> str:
        return self._model

    async def generate_image(
        self,
        prompt: ScenePrompt,
        *,
        reference_image: str | None = None,
        **model_kwargs: Any,
    ) -> Any:
        """
        Return the first image object of the provider response, or ``None``.

        ``reference_image`` is accepted for interface parity; text-to-image
        models ignore it.
        """
        payload: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt.positive,
            "n": 1,
            "size": self._size,
            "quality": self._quality,
        }
        if self._api_key is not None:
            payload["api_key"] = self._api_key
        payload.update(model_kwargs)

        response = await aimage_generation(**payload)
        data = getattr(response, "data", None)
        if data is None and isinstance(response, dict):
            data = response.get("data")
        if not data:
            return None
        return data[0]


def build_image_generator(provider: str | None = None) -> ImageGenerator:
    """
    Instantiate the image generator named by ``DOODLEBOOK_IMAGE_PROVIDER``.
    """
    selected = (provider or os.getenv("DOODLEBOOK_IMAGE_PROVIDER") or "litellm").strip().lower()
    if selected == "replicate":
        from .replicate_service import ReplicateImageGenerator

        return ReplicateImageGenerator()
    if selected == "litellm":
        return LiteLLMImageGenerator()
    raise ValueError(f"Unsupported image provider '{selected}'. Use 'litellm' or 'replicate'.")
