"""
Prompt construction utilities for the storybook text generation call.
"""

from __future__ import annotations

from dataclasses import dataclass

from .request import StorybookRequest

STORY_PAGE_COUNT = 10

DEFAULT_STRUCTURE_GUIDANCE = f"""Respond with a single JSON object and nothing else:
{{
  "highlightPage": <integer 1-{STORY_PAGE_COUNT}, the emotional peak of the story>,
  "pages": [
    {{"page": 1, "content": "2-4 short sentences for this page"}},
    ... exactly {STORY_PAGE_COUNT} pages numbered 1 to {STORY_PAGE_COUNT} ...
  ],
  "imagePrompts": {{
    "styleGuide": "shared palette, medium and line quality for every illustration",
    "world": "the setting and recurring props",
    "cover": "scene for the cover illustration",
    "highlight": "scene for the highlight page illustration",
    "end": "scene for the final page illustration"
  }},
  "characters": [
    {{"name": "protagonist name", "description": "short visual anchor (colors, shape, clothing)"}}
  ]
}}"""


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the LLM.
    """

    system: str
    user: str


def build_story_prompt(
    request: StorybookRequest,
    *,
    structure_guidance: str = DEFAULT_STRUCTURE_GUIDANCE,
) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a ten-page picture book from the LLM.
    """
    system_prompt = f"""You are a warm children's picture-book author and art director.
You turn a child's drawing, its title and a short description into a {STORY_PAGE_COUNT}-page story
with matching illustration briefs.

Writing directives:
- Write every page in {request.prompt_language}. Keep names from the title and description unchanged.
- The drawing's subject is the protagonist; keep it recognizable and central on every page.
- Follow a clear beginning, middle, highlight moment and gentle resolution.
- Use short read-aloud sentences with rhythm, gentle repetition and a little humor.
- Quoted dialogue is welcome, but keep each quote short so it can be narrated naturally.
- Choose one highlight page that carries the emotional peak of the story.
- Illustration briefs describe one scene each, never a collage or comic strip, and never include text.

Safety guardrails:
- Avoid frightening peril, violence or mature themes.
- Keep language inclusive, kind and safe for young children.
- Do not include author notes or meta commentary. Do not mention you are an AI.
"""

    user_prompt = f"""Create the storybook for this request:

{request.summary_for_prompt()}

Output format:
{structure_guidance}"""

    return StoryPrompt(system=system_prompt, user=user_prompt)
