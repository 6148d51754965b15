"""
Normalize raw LLM story output into a validated page/image/narration model.

Two response shapes are accepted. The structured shape is an object with
``highlightPage``, ``pages``, ``imagePrompts`` and ``characters``. The legacy
shape is a bare array (or ``{"pages": [...]}``) of ``{page, content,
isHighlight}`` items. Each shape has its own validator; the structured one is
tried first and the legacy one only if it rejects the payload. Output that
satisfies neither is a content contract violation and yields ``None``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal, Mapping

STORY_PAGE_COUNT = 10
DEFAULT_LEGACY_HIGHLIGHT_PAGE = 6

# "charaters" is a misspelling the prompt-side model emits often enough to accept.
CHARACTER_KEYS = ("characters", "charaters")

LEGACY_STYLE_GUIDE = (
    "Soft watercolor and colored-pencil picture-book illustration, warm pastel palette, "
    "gentle rounded shapes, faithful to the colors and shapes of the child's original drawing."
)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)

ParseKind = Literal["structured", "legacy", "invalid"]


@dataclass(frozen=True)
class ParsedPage:
    """A single story page with its narration text."""

    page: int
    content: str
    narration: str
    is_highlight: bool = False
    title: str | None = None


@dataclass(frozen=True)
class ImagePrompts:
    """Scene descriptions for the three illustrations plus shared guides."""

    cover: str
    highlight: str
    end: str
    style_guide: str | None = None
    world: str | None = None

    def for_role(self, role: str) -> str:
        if role not in ("cover", "highlight", "end"):
            raise ValueError(f"Unknown image role '{role}'.")
        return getattr(self, role)


@dataclass(frozen=True)
class StoryCharacter:
    name: str
    description: str | None = None


@dataclass(frozen=True)
class ParsedStory:
    """
    Validated story: exactly ten pages in ascending order, one of them flagged highlight.
    """

    pages: tuple[ParsedPage, ...]
    image_prompts: ImagePrompts
    highlight_page: int
    characters: tuple[StoryCharacter, ...] = field(default_factory=tuple)

    @property
    def final_page(self) -> int:
        return self.pages[-1].page

    def page(self, number: int) -> ParsedPage:
        for item in self.pages:
            if item.page == number:
                return item
        raise KeyError(number)

    def narration_pages(self) -> list[int]:
        return [item.page for item in self.pages if item.narration]


@dataclass(frozen=True)
class ParseOutcome:
    """
    Tagged result of parsing: which schema matched, and the story if any did.
    """

    kind: ParseKind
    story: ParsedStory | None = None

    @classmethod
    def structured(cls, story: ParsedStory) -> "ParseOutcome":
        return cls(kind="structured", story=story)

    @classmethod
    def legacy(cls, story: ParsedStory) -> "ParseOutcome":
        return cls(kind="legacy", story=story)

    @classmethod
    def invalid(cls) -> "ParseOutcome":
        return cls(kind="invalid")

    @property
    def ok(self) -> bool:
        return self.story is not None


def parse_story_output(
    raw_text: str | None,
    *,
    title: str = "",
    description: str = "",
) -> ParsedStory | None:
    """
    Parse raw provider text, returning ``None`` when neither schema validates.
    """
    return parse_story_outcome(raw_text, title=title, description=description).story


def parse_story_outcome(
    raw_text: str | None,
    *,
    title: str = "",
    description: str = "",
) -> ParseOutcome:
    if not raw_text or not raw_text.strip():
        return ParseOutcome.invalid()

    candidates = list(_decode_candidates(strip_code_fences(raw_text)))

    for payload in candidates:
        story = _validate_structured(payload)
        if story is not None:
            return ParseOutcome.structured(story)

    for payload in candidates:
        story = _validate_legacy(payload, title=title, description=description)
        if story is not None:
            return ParseOutcome.legacy(story)

    return ParseOutcome.invalid()


def strip_code_fences(text: str) -> str:
    match = _FENCE_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return text.strip()


def _decode_candidates(text: str) -> Iterable[Any]:
    """Yield every JSON value recoverable from the text: whole text, then object and array slices."""
    seen: set[str] = set()
    slices = [text]
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            slices.append(text[start : end + 1])

    for candidate in slices:
        if candidate in seen:
            continue
        seen.add(candidate)
        try:
            yield json.loads(candidate)
        except json.JSONDecodeError:
            continue


# ---------- structured schema ----------


def _validate_structured(payload: Any) -> ParsedStory | None:
    if not isinstance(payload, Mapping):
        return None

    highlight_page = _as_page_number(payload.get("highlightPage"))
    if highlight_page is None:
        return None

    raw_pages = payload.get("pages")
    if not isinstance(raw_pages, list) or len(raw_pages) != STORY_PAGE_COUNT:
        return None

    entries: list[tuple[int, str, str, str | None]] = []
    for item in raw_pages:
        if not isinstance(item, Mapping):
            return None
        number = _as_page_number(item.get("page"))
        content = _clean_text(item.get("content"))
        if number is None or content is None:
            return None
        narration = _clean_text(item.get("narration")) or content
        entries.append((number, content, narration, _clean_text(item.get("title"))))

    entries.sort(key=lambda entry: entry[0])
    if not _is_complete_sequence(entry[0] for entry in entries):
        return None

    image_prompts = _parse_image_prompts(payload.get("imagePrompts"))
    if image_prompts is None:
        return None

    pages = tuple(
        ParsedPage(
            page=number,
            content=content,
            narration=narration,
            is_highlight=number == highlight_page,
            title=page_title,
        )
        for number, content, narration, page_title in entries
    )
    return ParsedStory(
        pages=pages,
        image_prompts=image_prompts,
        highlight_page=highlight_page,
        characters=_parse_characters(payload),
    )


def _parse_image_prompts(raw: Any) -> ImagePrompts | None:
    if not isinstance(raw, Mapping):
        return None

    cover = _clean_text(raw.get("cover"))
    highlight = _clean_text(raw.get("highlight"))
    end = _clean_text(raw.get("end"))
    if cover is None or highlight is None or end is None:
        return None

    return ImagePrompts(
        cover=cover,
        highlight=highlight,
        end=end,
        style_guide=_clean_text(raw.get("styleGuide", raw.get("style_guide"))),
        world=_clean_text(raw.get("world")),
    )


def _parse_characters(payload: Mapping[str, Any]) -> tuple[StoryCharacter, ...]:
    raw: Any = None
    for key in CHARACTER_KEYS:
        if key in payload:
            raw = payload[key]
            break

    if not isinstance(raw, list):
        return ()

    characters: list[StoryCharacter] = []
    for item in raw:
        if isinstance(item, Mapping):
            name = _clean_text(item.get("name"))
            description = _clean_text(
                item.get("description")
                or item.get("visualAnchor")
                or item.get("appearance")
            )
        elif isinstance(item, str) and ":" in item:
            raw_name, raw_description = item.split(":", 1)
            name = _clean_text(raw_name)
            description = _clean_text(raw_description)
        else:
            name = _clean_text(item) if isinstance(item, str) else None
            description = None

        if name:
            characters.append(StoryCharacter(name=name, description=description))
    return tuple(characters)


# ---------- legacy schema ----------


def _validate_legacy(payload: Any, *, title: str, description: str) -> ParsedStory | None:
    if isinstance(payload, list):
        raw_pages: Any = payload
        container: Mapping[str, Any] = {}
    elif isinstance(payload, Mapping):
        raw_pages = payload.get("pages")
        container = payload
    else:
        return None

    if not isinstance(raw_pages, list) or len(raw_pages) != STORY_PAGE_COUNT:
        return None

    entries: list[tuple[int, str, bool]] = []
    for item in raw_pages:
        if not isinstance(item, Mapping):
            return None
        number = _as_page_number(item.get("page"))
        content = _clean_text(item.get("content"))
        if number is None or content is None:
            return None
        entries.append((number, content, item.get("isHighlight") is True))

    entries.sort(key=lambda entry: entry[0])
    if not _is_complete_sequence(entry[0] for entry in entries):
        return None

    highlight_page = next(
        (number for number, _, flagged in entries if flagged),
        DEFAULT_LEGACY_HIGHLIGHT_PAGE,
    )
    contents = {number: content for number, content, _ in entries}

    image_prompts = _parse_image_prompts(container.get("imagePrompts"))
    if image_prompts is None:
        image_prompts = synthesize_image_prompts(
            title=title,
            description=description,
            highlight_content=contents[highlight_page],
            ending_content=contents[STORY_PAGE_COUNT],
        )

    pages = tuple(
        ParsedPage(
            page=number,
            content=content,
            narration=content,
            is_highlight=number == highlight_page,
        )
        for number, content, _ in entries
    )
    return ParsedStory(
        pages=pages,
        image_prompts=image_prompts,
        highlight_page=highlight_page,
        characters=_parse_characters(container),
    )


def synthesize_image_prompts(
    *,
    title: str,
    description: str,
    highlight_content: str,
    ending_content: str,
) -> ImagePrompts:
    """
    Build cover/highlight/end prompts for legacy output that carried none.
    """
    story_title = title.strip() or "Untitled"
    summary = description.strip()
    summary_clause = f" {summary}" if summary else ""

    return ImagePrompts(
        cover=(
            f'Cover illustration for the picture book "{story_title}".{summary_clause} '
            "The main character stands at the center, cheerful and inviting."
        ),
        highlight=f'The most exciting moment of "{story_title}": {highlight_content}',
        end=f'The final scene of "{story_title}": {ending_content} A warm, peaceful ending.',
        style_guide=LEGACY_STYLE_GUIDE,
        world=summary or None,
    )


# ---------- shared helpers ----------


def _as_page_number(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value.strip())
    else:
        return None
    return number if 1 <= number <= STORY_PAGE_COUNT else None


def _clean_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _is_complete_sequence(numbers: Iterable[int]) -> bool:
    return list(numbers) == list(range(1, STORY_PAGE_COUNT + 1))
