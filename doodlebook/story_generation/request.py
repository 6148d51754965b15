"""
Structured representation of a storybook creation request submitted by a user.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .languages import SUPPORTED_LANGUAGES, is_story_language, resolve_prompt_language

MAX_TITLE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 2000


def _coerce_required_str(value: Any, field_name: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string.")

    text = value.strip()
    if not text:
        raise ValueError(f"{field_name} must be a non-empty string.")
    if len(text) > max_length:
        raise ValueError(f"{field_name} must be at most {max_length} characters.")
    return text


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


def _normalize_drawing(value: Any) -> str | None:
    if isinstance(value, str) and value.startswith("data:image/"):
        return value
    return None


@dataclass(frozen=True)
class StorybookRequest:
    """
    Normalized title, description, language and optional drawing for one storybook.
    """

    title: str
    description: str
    language: str = "ko"
    author_name: str | None = None
    drawing_data_url: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "StorybookRequest":
        """
        Build a request from a JSON body or a YAML/JSON file mapping.

        Raises
        ------
        ValueError
            If title, description or language are missing or invalid.
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Storybook request must be a mapping.")

        language = payload.get("language", "ko")
        if not is_story_language(language):
            supported = ", ".join(SUPPORTED_LANGUAGES)
            raise ValueError(f"language must be one of: {supported}.")

        return cls(
            title=_coerce_required_str(payload.get("title"), "title", MAX_TITLE_LENGTH),
            description=_coerce_required_str(
                payload.get("description"), "description", MAX_DESCRIPTION_LENGTH
            ),
            language=language,
            author_name=_coerce_optional_str(
                payload.get("authorName", payload.get("author_name"))
            ),
            drawing_data_url=_normalize_drawing(
                payload.get("imageDataUrl", payload.get("drawing_data_url"))
            ),
        )

    @property
    def prompt_language(self) -> str:
        return resolve_prompt_language(self.language)

    def summary_for_prompt(self) -> str:
        lines = [
            f"- Title: {self.title}",
            f"- Description: {self.description}",
            f"- Language: {self.prompt_language}",
        ]
        if self.author_name:
            lines.append(f"- Author: {self.author_name}")
        if self.drawing_data_url:
            lines.append("- A reference drawing is attached; treat it as the visual origin of the story.")
        return "\n".join(lines)
