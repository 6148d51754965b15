"""
All-or-nothing persistence of a generated storybook.

The relational store is only reachable through stateless REST calls, so the
write is a saga: assets are uploaded first, then the storybook row and its
detail rows are inserted in order. When a step fails, every completed step
is compensated in reverse order before the failure is reported.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Sequence

from doodlebook.ai_generation.media import MediaPayload
from doodlebook.common.errors import PersistenceError, StoreError, StorybookError
from doodlebook.storage.object_store import ObjectStoreClient, image_key, narration_key
from doodlebook.storage.rest import RestStoreClient, eq
from doodlebook.story_generation.output_parser import ParsedStory
from doodlebook.story_generation.request import StorybookRequest

from .assets import GeneratedAssets
from .records import (
    HIGHLIGHT_IMAGE_METADATA_KEY,
    ORIGIN_DETAILS_TABLE,
    OUTPUT_DETAILS_TABLE,
    STORYBOOKS_TABLE,
    OriginDetailRecord,
    OutputDetailRecord,
    StorybookRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    compensate: Callable[[], Awaitable[Any]] | None = None


@dataclass(frozen=True)
class SagaOutcome:
    completed: tuple[str, ...]
    failed_step: str | None = None
    error: BaseException | None = None
    rollback_failures: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.failed_step is None


async def run_saga(steps: Sequence[SagaStep]) -> SagaOutcome:
    """
    Run ``steps`` in order; on the first failure compensate completed steps in reverse.

    Compensation failures are logged and collected, never raised.
    """
    completed: list[SagaStep] = []
    for step in steps:
        try:
            await step.action()
        except Exception as exc:
            logger.error("Saga step '%s' failed: %s", step.name, exc)
            rollback_failures: list[str] = []
            for done in reversed(completed):
                if done.compensate is None:
                    continue
                try:
                    await done.compensate()
                except Exception:
                    logger.exception("Compensation for saga step '%s' failed.", done.name)
                    rollback_failures.append(done.name)
            return SagaOutcome(
                completed=tuple(item.name for item in completed),
                failed_step=step.name,
                error=exc,
                rollback_failures=tuple(rollback_failures),
            )
        completed.append(step)

    return SagaOutcome(completed=tuple(item.name for item in completed))


@dataclass(frozen=True)
class AssetUpload:
    key: str
    payload: MediaPayload


@dataclass(frozen=True)
class StorybookBundle:
    """Everything the saga writes for one storybook."""

    storybook: StorybookRecord
    origin_details: tuple[OriginDetailRecord, ...]
    output_details: tuple[OutputDetailRecord, ...]
    uploads: tuple[AssetUpload, ...] = field(default_factory=tuple)


def build_storybook_bundle(
    *,
    storybook_id: str,
    user_id: str,
    request: StorybookRequest,
    story: ParsedStory,
    assets: GeneratedAssets,
    metadata: dict[str, Any] | None = None,
) -> StorybookBundle:
    """
    Lay out asset keys and detail rows for a parsed story and its generated assets.

    Output rows: index 0 is the cover, 1..N the story pages. The highlight page
    and the final page carry an image; when they are the same page the row keeps
    the ending image and records the highlight key in its metadata.
    """
    uploads: list[AssetUpload] = []

    def add_upload(key: str, payload: MediaPayload) -> str:
        uploads.append(AssetUpload(key=key, payload=payload))
        return key

    cover_key = add_upload(
        image_key(user_id, storybook_id, "cover", assets.cover.extension), assets.cover
    )
    highlight_key = add_upload(
        image_key(user_id, storybook_id, "highlight", assets.highlight.extension), assets.highlight
    )
    end_key = add_upload(image_key(user_id, storybook_id, "end", assets.end.extension), assets.end)

    origin_key: str | None = None
    if request.drawing_data_url:
        drawing = MediaPayload.from_data_url(request.drawing_data_url)
        if drawing is not None:
            origin_key = add_upload(
                image_key(user_id, storybook_id, "origin", drawing.extension), drawing
            )

    audio_keys: dict[int, str] = {}
    for page, clip in sorted(assets.narrations.items()):
        audio_keys[page] = add_upload(
            narration_key(user_id, storybook_id, page, clip.extension), clip
        )

    final_page = story.final_page
    output_details = [
        OutputDetailRecord(
            storybook_id=storybook_id,
            page_index=0,
            page_type="cover",
            title=request.title,
            content=request.description,
            image_key=cover_key,
        )
    ]
    for page in story.pages:
        row_metadata: dict[str, Any] = {}
        if page.page == final_page:
            page_image = end_key
            if page.is_highlight:
                row_metadata[HIGHLIGHT_IMAGE_METADATA_KEY] = highlight_key
        elif page.is_highlight:
            page_image = highlight_key
        else:
            page_image = None

        output_details.append(
            OutputDetailRecord(
                storybook_id=storybook_id,
                page_index=page.page,
                page_type="story",
                title=page.title,
                content=page.content,
                image_key=page_image,
                audio_key=audio_keys.get(page.page),
                is_highlight=page.is_highlight,
                metadata=row_metadata,
            )
        )

    storybook = StorybookRecord(
        id=storybook_id,
        user_id=user_id,
        title=request.title,
        author_name=request.author_name,
        description=request.description,
        language=request.language,
        page_count=len(story.pages),
        origin_image_key=origin_key,
        cover_image_key=cover_key,
        highlight_image_key=highlight_key,
        end_image_key=end_key,
        metadata={"highlight_page": story.highlight_page, **(metadata or {})},
    )
    origin_details = (
        OriginDetailRecord(
            storybook_id=storybook_id,
            description=request.description,
            drawing_image_key=origin_key,
        ),
    )
    return StorybookBundle(
        storybook=storybook,
        origin_details=origin_details,
        output_details=tuple(output_details),
        uploads=tuple(uploads),
    )


class PersistenceSaga:
    """
    Writes a :class:`StorybookBundle` to the object store and the relational store.
    """

    def __init__(self, *, store: RestStoreClient, object_store: ObjectStoreClient) -> None:
        self._store = store
        self._objects = object_store

    async def persist(self, bundle: StorybookBundle) -> StorybookRecord:
        """
        Raises
        ------
        PersistenceError
            Naming the step that failed, after completed steps were rolled back.
        """
        storybook_id = bundle.storybook.id
        uploaded: list[str] = []

        async def upload_assets() -> None:
            uploaded.extend(await self._upload_all(bundle.uploads))

        async def delete_uploads() -> None:
            await self._delete_objects(uploaded)

        async def insert_storybook() -> None:
            await self._store.insert(STORYBOOKS_TABLE, bundle.storybook.to_row())

        async def delete_storybook() -> None:
            await self._store.delete(STORYBOOKS_TABLE, filters={"id": eq(storybook_id)})

        async def insert_origin_details() -> None:
            await self._store.insert(
                ORIGIN_DETAILS_TABLE, [record.to_row() for record in bundle.origin_details]
            )

        async def delete_origin_details() -> None:
            await self._store.delete(
                ORIGIN_DETAILS_TABLE, filters={"storybook_id": eq(storybook_id)}
            )

        async def insert_output_details() -> None:
            await self._store.insert(
                OUTPUT_DETAILS_TABLE, [record.to_row() for record in bundle.output_details]
            )

        async def delete_output_details() -> None:
            await self._store.delete(
                OUTPUT_DETAILS_TABLE, filters={"storybook_id": eq(storybook_id)}
            )

        outcome = await run_saga(
            [
                SagaStep("upload_assets", upload_assets, delete_uploads),
                SagaStep("insert_storybook", insert_storybook, delete_storybook),
                SagaStep("insert_origin_details", insert_origin_details, delete_origin_details),
                SagaStep("insert_output_details", insert_output_details, delete_output_details),
            ]
        )

        if not outcome.ok:
            error = outcome.error
            message = error.message if isinstance(error, StorybookError) else str(error)
            if outcome.rollback_failures:
                logger.error(
                    "Storybook %s left partially written; rollback failed for %s.",
                    storybook_id,
                    ", ".join(outcome.rollback_failures),
                )
            raise PersistenceError(
                outcome.failed_step or "unknown",
                f"Failed to persist storybook ({outcome.failed_step}): {message}",
            ) from error

        return bundle.storybook

    async def _upload_all(self, uploads: Iterable[AssetUpload]) -> list[str]:
        """Upload concurrently; if any upload fails, remove the ones that succeeded and re-raise."""
        items = list(uploads)
        results = await asyncio.gather(
            *(
                self._objects.put(item.key, item.payload.data, content_type=item.payload.content_type)
                for item in items
            ),
            return_exceptions=True,
        )

        succeeded = [item.key for item, result in zip(items, results) if not isinstance(result, BaseException)]
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            try:
                await self._delete_objects(succeeded)
            except StoreError as exc:
                logger.error("Cleanup after a failed upload batch was incomplete: %s", exc.message)
            raise failures[0]
        return succeeded

    async def _delete_objects(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        failed = await self._objects.delete_many(keys)
        if failed:
            raise StoreError(502, f"Failed to delete {len(failed)} uploaded asset(s).")
