"""
Integration with Replicate for storybook illustration generation.
"""

from __future__ import annotations

import os
from typing import Any, Callable

import replicate

from .prompting import ScenePrompt


def _build_flux_kontext_input(
    *,
    prompt: ScenePrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt.positive,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": False,
        "aspect_ratio": "1:1",
    }
    if reference_image:
        payload["input_image"] = reference_image
    return payload


def _build_flux_text_input(
    *,
    prompt: ScenePrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "output_format": "png",
        "aspect_ratio": "1:1",
        "num_outputs": 1,
    }


def _build_sdxl_input(
    *,
    prompt: ScenePrompt,
    reference_image: str | None,
) -> dict[str, Any]:
    return {
        "prompt": prompt.positive,
        "negative_prompt": prompt.negative,
        "width": 1024,
        "height": 1024,
        "num_outputs": 1,
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-schnell": _build_flux_text_input,
    "black-forest-labs/flux-1.1-pro": _build_flux_text_input,
    "stability-ai/sdxl": _build_sdxl_input,
}


def _resolve_input_builder(model_identifier: str) -> Callable[..., dict[str, Any]]:
    """Look up the payload builder for ``owner/model`` or ``owner/model:version``."""
    base, _, _version = model_identifier.strip().lower().partition(":")
    try:
        return _MODEL_INPUT_BUILDERS[base]
    except KeyError:
        known = ", ".join(sorted(_MODEL_INPUT_BUILDERS))
        raise ValueError(
            f"No illustration input builder for Replicate model '{model_identifier}'. "
            f"Known models: {known}."
        ) from None


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for storybook illustrations.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model`` or ``owner/model:version`` format. Falls back
        to ``REPLICATE_MODEL`` and then to ``black-forest-labs/flux-kontext-pro``.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        client: replicate.Client | None = None,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = (
            model_identifier
            or os.getenv("REPLICATE_MODEL")
            or "black-forest-labs/flux-kontext-pro"
        )
        self._client = client or replicate.Client(api_token=self._api_token)

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    async def generate_image(
        self,
        prompt: ScenePrompt,
        *,
        reference_image: str | None = None,
        **model_kwargs: Any,
    ) -> Any:
        """
        Run the configured model and return its raw output.

        Most models return a file object or a list of URLs; the caller normalizes
        either form with :func:`doodlebook.ai_generation.media.materialize_media`.
        """
        build_input = _resolve_input_builder(self._model_identifier)
        replicate_input = {
            **build_input(prompt=prompt, reference_image=reference_image),
            **model_kwargs,
        }

        return await self._client.async_run(
            self._model_identifier,
            input=replicate_input,
        )
