"""
Concurrent illustration and narration generation for a parsed story.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol

import httpx

from doodlebook.ai_generation.image_service import ImageGenerator
from doodlebook.ai_generation.media import MediaPayload, materialize_media
from doodlebook.ai_generation.prompting import IMAGE_ROLES, build_scene_prompt
from doodlebook.common.errors import FulfillmentError
from doodlebook.story_generation.output_parser import ParsedStory

logger = logging.getLogger(__name__)


class SpeechSynthesizer(Protocol):
    content_type: str

    async def synthesize(self, text: str, *, language: str) -> bytes | None:
        ...


@dataclass(frozen=True)
class GeneratedAssets:
    """All three illustrations and one narration clip per narrated page."""

    images: dict[str, MediaPayload]
    narrations: dict[int, MediaPayload]

    @property
    def cover(self) -> MediaPayload:
        return self.images["cover"]

    @property
    def highlight(self) -> MediaPayload:
        return self.images["highlight"]

    @property
    def end(self) -> MediaPayload:
        return self.images["end"]


class AssetGenerationOrchestrator:
    """
    Fans out the image and narration calls for a story in one concurrent batch.

    Individual failures never raise: a failed call leaves its slot empty and
    the completeness check afterwards decides whether the batch is usable.
    """

    def __init__(
        self,
        *,
        image_generator: ImageGenerator,
        speech_synthesizer: SpeechSynthesizer,
        http_client: httpx.AsyncClient,
        reference_image: str | None = None,
    ) -> None:
        self._image_generator = image_generator
        self._speech = speech_synthesizer
        self._http = http_client
        self._reference_image = reference_image

    async def generate(
        self,
        story: ParsedStory,
        *,
        title: str,
        description: str = "",
        language: str,
        reference_image: str | None = None,
    ) -> GeneratedAssets:
        """
        Raises
        ------
        FulfillmentError
            If any illustration or any expected narration is missing.
        """
        characters = [(character.name, character.description) for character in story.characters]
        reference = reference_image or self._reference_image

        image_tasks: list[Awaitable[MediaPayload | None]] = [
            self._generate_image(
                role,
                story.image_prompts.for_role(role),
                style_guide=story.image_prompts.style_guide,
                world=story.image_prompts.world or description or None,
                characters=characters,
                title=title,
                reference_image=reference,
            )
            for role in IMAGE_ROLES
        ]

        narration_pages = story.narration_pages()
        narration_tasks: list[Awaitable[MediaPayload | None]] = [
            self._generate_narration(page, story.page(page).narration, language=language)
            for page in narration_pages
        ]

        results = await asyncio.gather(*image_tasks, *narration_tasks)
        image_results = results[: len(IMAGE_ROLES)]
        narration_results = results[len(IMAGE_ROLES) :]

        images = {
            role: payload for role, payload in zip(IMAGE_ROLES, image_results) if payload is not None
        }
        narrations = {
            page: payload
            for page, payload in zip(narration_pages, narration_results)
            if payload is not None
        }

        missing_images = tuple(role for role in IMAGE_ROLES if role not in images)
        missing_narrations = tuple(page for page in narration_pages if page not in narrations)
        if missing_images or missing_narrations:
            logger.error(
                "Asset generation incomplete: missing images %s, missing narrations %s.",
                list(missing_images),
                list(missing_narrations),
            )
            raise FulfillmentError(
                "Storybook assets could not be generated completely.",
                missing_images=missing_images,
                missing_narrations=missing_narrations,
            )

        return GeneratedAssets(images=images, narrations=narrations)

    async def _generate_image(
        self,
        role: str,
        scene_description: str,
        *,
        style_guide: str | None,
        world: str | None,
        characters: list[tuple[str, str | None]],
        title: str,
        reference_image: str | None,
    ) -> MediaPayload | None:
        try:
            prompt = build_scene_prompt(
                role,
                scene_description,
                style_guide=style_guide,
                world=world,
                characters=characters,
                title=title,
            )
            raw: Any = await self._image_generator.generate_image(
                prompt, reference_image=reference_image
            )
            payload = await materialize_media(raw, http_client=self._http)
        except Exception:
            logger.exception("Image generation for the %s illustration failed.", role)
            return None

        if payload is None:
            logger.warning("Image provider returned no data for the %s illustration.", role)
        return payload

    async def _generate_narration(self, page: int, text: str, *, language: str) -> MediaPayload | None:
        try:
            audio = await self._speech.synthesize(text, language=language)
        except Exception:
            logger.exception("Narration synthesis for page %s failed.", page)
            return None

        if not audio:
            logger.warning("Speech provider returned no audio for page %s.", page)
            return None
        return MediaPayload(content_type=self._speech.content_type, data=audio)
