"""
Service layer for producing storybook text via LiteLLM-compatible models.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from doodlebook.common import ChatResult, CompletionCallable, ProviderError, call_chat_completion
from doodlebook.common.config import resolve_llm_api_key, resolve_prompt_version, resolve_story_model

from .prompting import StoryPrompt, build_story_prompt
from .request import StorybookRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoryDraft:
    """Raw LLM output together with the identifiers recorded in storybook metadata."""

    text: str
    response_id: str | None
    prompt_version: str


class StoryTextGenerator:
    """
    High-level helper that turns a storybook request into raw story text.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        prompt_version: str | None = None,
        completion_fn: CompletionCallable | None = None,
    ) -> None:
        self._api_key = resolve_llm_api_key(api_key)
        self._model = resolve_story_model(model)
        self._prompt_version = resolve_prompt_version(prompt_version)
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion

    @property
    def model(self) -> str:
        """Return the model identifier in use."""
        return self._model

    async def generate(
        self,
        request: StorybookRequest,
        *,
        temperature: float = 0.8,
        max_output_tokens: int = 3000,
        **response_kwargs: Any,
    ) -> StoryDraft:
        """
        Invoke the configured LLM to produce the structured story text.

        Raises
        ------
        ProviderError
            If the provider call fails or returns no text.
        """
        prompt: StoryPrompt = build_story_prompt(request)

        user_content: Any = prompt.user
        if request.drawing_data_url:
            user_content = [
                {"type": "image_url", "image_url": {"url": request.drawing_data_url}},
                {"type": "text", "text": prompt.user},
            ]

        messages = [
            {"role": "system", "content": prompt.system},
            {"role": "user", "content": user_content},
        ]

        try:
            result: ChatResult = await self._completion_fn(
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_output_tokens,
                api_key=self._api_key,
                **response_kwargs,
            )
        except Exception as exc:
            logger.exception("Story generation call to %s failed.", self._model)
            raise ProviderError("Failed to reach the story generation provider.") from exc

        if not result.text:
            raise ProviderError("LLM response did not contain any text content.")

        return StoryDraft(
            text=result.text,
            response_id=result.response_id,
            prompt_version=self._prompt_version,
        )
