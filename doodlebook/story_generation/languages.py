"""
Supported story languages and their prompt-facing names.
"""

from __future__ import annotations

from typing import Literal

StoryLanguage = Literal["ko", "en", "ja", "zh"]

SUPPORTED_LANGUAGES: tuple[str, ...] = ("ko", "en", "ja", "zh")

_PROMPT_LANGUAGE_NAMES = {
    "ko": "korean",
    "en": "english",
    "ja": "japanese",
    "zh": "chinese",
}


def is_story_language(value: object) -> bool:
    return isinstance(value, str) and value in SUPPORTED_LANGUAGES


def resolve_prompt_language(language: str) -> str:
    """Return the lowercase language name used inside prompts (defaults to english)."""
    return _PROMPT_LANGUAGE_NAMES.get(language, "english")
