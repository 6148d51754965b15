"""
Prompt construction utilities for storybook illustrations and narration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

IMAGE_ROLES: tuple[str, ...] = ("cover", "highlight", "end")

COMPOSITION_RULES = (
    "Single full-frame image, no collage, no panels, no split screen, no inset frames.",
    "Do not render any text, letters, captions, speech bubbles or watermarks.",
    "Keep the protagonist readable at thumbnail size; background supports the scene without stealing focus.",
)

NEGATIVE_PROMPT = (
    "collage, comic panels, split screen, multiple frames, text, letters, watermark, logo, "
    "photorealistic, frightening, gore, cluttered background, deformed anatomy"
)

_ROLE_HEADINGS = {
    "cover": "SCENE (book cover)",
    "highlight": "SCENE (highlight moment)",
    "end": "SCENE (final page)",
}

_NARRATION_DELIVERY = {
    "ko": (
        "Read in natural, warm Korean like a storyteller reading a picture book to a young child.",
        "Keep a gentle, unhurried pace with soft pauses between sentences.",
    ),
    "en": (
        "Read in clear, friendly English like a parent reading a bedtime picture book.",
        "Use a calm, unhurried pace and let sentence endings settle before moving on.",
    ),
    "ja": (
        "Read in soft, natural Japanese with the gentle cadence of an ehon read-aloud.",
        "Keep a slow, even pace and pause briefly at each sentence end.",
    ),
    "zh": (
        "Read in clear Mandarin Chinese with accurate tones, like a kind storyteller for young children.",
        "Keep a relaxed pace with short pauses between sentences.",
    ),
}

DIALOGUE_GUIDANCE = (
    "When you reach quoted dialogue, shift lightly into the speaking character's voice, "
    "then return to the narrator for the rest of the sentence. Never read quotation marks aloud."
)


@dataclass(frozen=True)
class ScenePrompt:
    """Container for the positive and negative prompts passed to the image model."""

    role: str
    positive: str
    negative: str = NEGATIVE_PROMPT


def build_scene_prompt(
    role: str,
    scene_description: str,
    *,
    style_guide: str | None = None,
    world: str | None = None,
    characters: Sequence[tuple[str, str | None]] | Mapping[str, str] | None = None,
    title: str | None = None,
) -> ScenePrompt:
    """
    Build the prompt for one of the three storybook illustrations.

    Parameters
    ----------
    role:
        One of ``cover``, ``highlight`` or ``end``.
    scene_description:
        What should be depicted in this illustration.
    style_guide:
        Shared palette/medium guidance, repeated in every illustration of the book.
    world:
        Shared setting description, repeated in every illustration of the book.
    characters:
        ``(name, visual anchor)`` pairs. The first entry is treated as the
        protagonist that every illustration focuses on.
    title:
        Book title, mentioned on the cover prompt only.
    """
    if role not in IMAGE_ROLES:
        raise ValueError(f"role must be one of {', '.join(IMAGE_ROLES)}, received '{role}'.")

    if not scene_description or not scene_description.strip():
        raise ValueError("scene_description must be a non-empty string.")

    sections = [_format_bullet_section("COMPOSITION", COMPOSITION_RULES)]

    style_lines = _normalize_note_input(style_guide)
    if style_lines:
        sections.append(_format_bullet_section("STYLE GUIDE", style_lines))

    world_lines = _normalize_note_input(world)
    if world_lines:
        sections.append(_format_bullet_section("WORLD", world_lines))

    character_lines = _character_consistency_lines(characters)
    if character_lines:
        sections.append(_format_bullet_section("CHARACTER CONSISTENCY", character_lines))

    scene_lines = _normalize_note_input(scene_description)
    if role == "cover" and title and title.strip():
        scene_lines.append(
            f'This is the cover of the picture book "{title.strip()}"; leave calm space near the top.'
        )
    sections.append(_format_bullet_section(_ROLE_HEADINGS[role], scene_lines))

    return ScenePrompt(role=role, positive="\n\n".join(sections))


def build_narration_instructions(language: str) -> str:
    """
    Delivery instructions passed to the speech model alongside each page's text.
    """
    delivery = _NARRATION_DELIVERY.get(language, _NARRATION_DELIVERY["en"])
    return " ".join((*delivery, DIALOGUE_GUIDANCE))


def _character_consistency_lines(
    characters: Sequence[tuple[str, str | None]] | Mapping[str, str] | None,
) -> list[str]:
    if not characters:
        return []

    pairs = list(characters.items()) if isinstance(characters, Mapping) else list(characters)
    lines: list[str] = []
    for index, (name, anchor) in enumerate(pairs):
        name = (name or "").strip()
        if not name:
            continue
        anchor_text = (anchor or "").strip()
        detail = f"{name}: {anchor_text}" if anchor_text else name
        if index == 0:
            lines.append(f"Protagonist focus: {detail}. Keep them the clear focal point.")
        else:
            lines.append(detail)

    if lines:
        lines.append("Keep every character's colors, proportions and outfit identical across illustrations.")
    return lines


def _normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•")
            if cleaned:
                lines.append(cleaned)
    return lines


def _format_bullet_section(title: str, lines: Sequence[str]) -> str:
    bullet_block = "\n".join(f"- {line}" for line in lines if line.strip())
    return f"{title}\n{bullet_block}"
