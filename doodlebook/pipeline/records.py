"""
Row models for the storybook tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

STORYBOOKS_TABLE = "storybooks"
ORIGIN_DETAILS_TABLE = "storybook_origin_details"
OUTPUT_DETAILS_TABLE = "storybook_output_details"

StorybookStatus = Literal["draft", "generating", "completed", "failed"]
PageType = Literal["cover", "story"]

HIGHLIGHT_IMAGE_METADATA_KEY = "highlight_image_r2_key"


@dataclass(frozen=True)
class StorybookRecord:
    """A generated storybook with references to its four image assets."""

    id: str
    user_id: str
    title: str
    description: str
    language: str
    page_count: int
    status: StorybookStatus = "completed"
    author_name: str | None = None
    origin_image_key: str | None = None
    cover_image_key: str | None = None
    highlight_image_key: str | None = None
    end_image_key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "author_name": self.author_name,
            "description": self.description,
            "language": self.language,
            "status": self.status,
            "origin_image_r2_key": self.origin_image_key,
            "cover_image_r2_key": self.cover_image_key,
            "highlight_image_r2_key": self.highlight_image_key,
            "end_image_r2_key": self.end_image_key,
            "page_count": self.page_count,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class OriginDetailRecord:
    """The user's source drawing and the description they submitted with it."""

    storybook_id: str
    description: str
    page_index: int = 0
    drawing_image_key: str | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "storybook_id": self.storybook_id,
            "page_index": self.page_index,
            "drawing_image_r2_key": self.drawing_image_key,
            "description": self.description,
        }


@dataclass(frozen=True)
class OutputDetailRecord:
    """
    One generated page. Index 0 is the cover; indices 1..N are story pages.
    """

    storybook_id: str
    page_index: int
    page_type: PageType
    title: str | None = None
    content: str | None = None
    image_key: str | None = None
    audio_key: str | None = None
    is_highlight: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_row(self) -> dict[str, Any]:
        return {
            "storybook_id": self.storybook_id,
            "page_index": self.page_index,
            "page_type": self.page_type,
            "title": self.title,
            "content": self.content,
            "image_r2_key": self.image_key,
            "audio_r2_key": self.audio_key,
            "is_highlight": self.is_highlight,
            "metadata": dict(self.metadata),
        }
