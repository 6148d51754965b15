"""
Orchestrates storybook creation from the quota gate to the client response.
"""

from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from doodlebook.billing.entitlement import EntitlementEngine, QuotaState
from doodlebook.common.errors import ContentContractError, QuotaConflictError, StoreError
from doodlebook.story_generation import (
    StorybookRequest,
    StoryTextGenerator,
    parse_story_outcome,
)

from .assets import AssetGenerationOrchestrator
from .persistence import PersistenceSaga, build_storybook_bundle
from .response import build_creation_response

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class StorybookCreationPipeline:
    """
    High-level orchestrator tying together entitlement, story text, parsing,
    asset generation, persistence and quota debit.

    Quota is debited only after the storybook is fully persisted; every
    failure before that point leaves the user's quota untouched.
    """

    def __init__(
        self,
        *,
        entitlements: EntitlementEngine,
        story_generator: StoryTextGenerator,
        asset_orchestrator: AssetGenerationOrchestrator,
        persistence: PersistenceSaga,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._entitlements = entitlements
        self._story_generator = story_generator
        self._assets = asset_orchestrator
        self._persistence = persistence
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    async def create(
        self,
        user_id: str,
        request: StorybookRequest,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Create and persist a storybook, returning the creation response payload.

        Raises
        ------
        QuotaExceededError
            If the user may not create a storybook right now.
        ProviderError, ContentContractError, FulfillmentError, PersistenceError
            If generation or persistence fails. Nothing is debited in that case.
        """
        self._notify(progress_callback, "quota:checking", user_id=user_id)
        snapshot = await self._entitlements.ensure_can_create(user_id)
        self._notify(progress_callback, "quota:ready", plan=snapshot.current_plan.code)

        self._notify(progress_callback, "story:generating", language=request.language)
        draft = await self._story_generator.generate(request)
        self._notify(
            progress_callback,
            "story:generated",
            response_id=draft.response_id,
            characters=len(draft.text),
        )

        outcome = parse_story_outcome(
            draft.text, title=request.title, description=request.description
        )
        if outcome.story is None:
            logger.error(
                "Story output for response %s matched neither schema.", draft.response_id
            )
            raise ContentContractError("The generated story did not match the expected format.")
        story = outcome.story
        self._notify(
            progress_callback,
            "story:parsed",
            schema=outcome.kind,
            total_pages=len(story.pages),
            highlight_page=story.highlight_page,
        )

        self._notify(
            progress_callback,
            "assets:generating",
            images=3,
            narrations=len(story.narration_pages()),
        )
        assets = await self._assets.generate(
            story,
            title=request.title,
            description=request.description,
            language=request.language,
            reference_image=request.drawing_data_url,
        )
        self._notify(
            progress_callback,
            "assets:ready",
            images=len(assets.images),
            narrations=len(assets.narrations),
        )

        storybook_id = self._id_factory()
        bundle = build_storybook_bundle(
            storybook_id=storybook_id,
            user_id=user_id,
            request=request,
            story=story,
            assets=assets,
            metadata={
                "openai_response_id": draft.response_id,
                "prompt_version": draft.prompt_version,
                "parser_schema": outcome.kind,
            },
        )
        self._notify(progress_callback, "persistence:saving", storybook_id=storybook_id)
        await self._persistence.persist(bundle)
        self._notify(progress_callback, "persistence:saved", storybook_id=storybook_id)

        quota = await self._debit(user_id, storybook_id, snapshot.quota)
        self._notify(
            progress_callback,
            "quota:debited",
            free_used=quota.free_used,
            free_total=quota.free_total,
        )

        response = build_creation_response(
            bundle, quota=quota.to_payload(self._entitlements.today())
        )
        self._notify(progress_callback, "pipeline:complete", storybook_id=storybook_id)
        return response

    async def create_from_mapping(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        request = StorybookRequest.from_mapping(payload)
        return await self.create(user_id, request, progress_callback=progress_callback)

    async def create_from_file(
        self,
        user_id: str,
        request_path: str | Path,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """
        Create a storybook from a YAML or JSON request file.
        """
        payload = load_request_file(Path(request_path))
        return await self.create_from_mapping(
            user_id, payload, progress_callback=progress_callback
        )

    async def _debit(self, user_id: str, storybook_id: str, last_known: QuotaState) -> QuotaState:
        # The storybook already exists at this point, so a failed debit is not a failure.
        try:
            return await self._entitlements.debit(user_id)
        except (QuotaConflictError, StoreError) as exc:
            logger.warning(
                "Quota debit for user %s after storybook %s was not applied: %s",
                user_id,
                storybook_id,
                exc.message,
            )

        try:
            return await self._entitlements.ensure_quota(user_id)
        except StoreError as exc:
            logger.warning(
                "Could not re-read quota for user %s; reporting the pre-creation quota: %s",
                user_id,
                exc.message,
            )
            return last_known

    @staticmethod
    def _notify(
        callback: ProgressCallback | None,
        stage: str,
        **payload: Any,
    ) -> None:
        if callback is not None:
            callback(stage, payload)


def load_request_file(path: Path) -> Mapping[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".yaml", ".yml"}:
        return yaml.safe_load(text)
    if path.suffix.lower() == ".json":
        return json.loads(text)
    raise ValueError("Unsupported request file format. Use YAML or JSON.")
