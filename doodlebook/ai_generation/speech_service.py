"""
Narration synthesis through LiteLLM's speech endpoint.
"""

from __future__ import annotations

import os
from typing import Any

from litellm import aspeech

from doodlebook.common.config import resolve_llm_api_key

from .prompting import build_narration_instructions


class LiteLLMSpeechSynthesizer:
    """
    Turns page narration text into MP3 audio.
    """

    content_type = "audio/mpeg"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        voice: str | None = None,
        response_format: str = "mp3",
    ) -> None:
        self._api_key = resolve_llm_api_key(api_key)
        self._model = model or os.getenv("DOODLEBOOK_TTS_MODEL") or "openai/gpt-4o-mini-tts"
        self._voice = voice or os.getenv("DOODLEBOOK_TTS_VOICE") or "alloy"
        self._response_format = response_format

    @property
    def model(self) -> str:
        return self._model

    async def synthesize(self, text: str, *, language: str, **model_kwargs: Any) -> bytes | None:
        """
        Return the synthesized audio bytes, or ``None`` if the provider sent nothing.
        """
        payload: dict[str, Any] = {
            "model": self._model,
            "input": text,
            "voice": self._voice,
            "response_format": self._response_format,
            "instructions": build_narration_instructions(language),
        }
        if self._api_key is not None:
            payload["api_key"] = self._api_key
        payload.update(model_kwargs)

        response = await aspeech(**payload)
        content = getattr(response, "content", None)
        if isinstance(content, (bytes, bytearray)) and content:
            return bytes(content)
        return None
