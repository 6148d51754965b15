"""
Story generation utilities: request normalization, story prompting and output parsing.
"""

from .languages import SUPPORTED_LANGUAGES, StoryLanguage, resolve_prompt_language
from .output_parser import (
    ImagePrompts,
    ParsedPage,
    ParsedStory,
    ParseOutcome,
    StoryCharacter,
    parse_story_outcome,
    parse_story_output,
)
from .prompting import StoryPrompt, build_story_prompt
from .request import StorybookRequest
from .story_service import StoryDraft, StoryTextGenerator

__all__ = [
    "ImagePrompts",
    "ParsedPage",
    "ParsedStory",
    "ParseOutcome",
    "StoryCharacter",
    "StoryDraft",
    "StoryLanguage",
    "StoryPrompt",
    "StoryTextGenerator",
    "StorybookRequest",
    "SUPPORTED_LANGUAGES",
    "build_story_prompt",
    "parse_story_outcome",
    "parse_story_output",
    "resolve_prompt_language",
]
