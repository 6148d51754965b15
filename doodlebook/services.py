"""
Wiring of the storybook services from environment configuration.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from doodlebook.ai_generation import LiteLLMSpeechSynthesizer, build_image_generator
from doodlebook.billing import EntitlementEngine, WebhookReconciler
from doodlebook.common.config import BillingConfig, ObjectStoreConfig, RestStoreConfig
from doodlebook.common.errors import ConfigurationError
from doodlebook.pipeline import (
    AssetGenerationOrchestrator,
    PersistenceSaga,
    StorybookCreationPipeline,
    StorybookLibrary,
)
from doodlebook.storage import ObjectStoreClient, RestStoreClient
from doodlebook.story_generation import StoryTextGenerator


@dataclass
class StorybookServices:
    pipeline: StorybookCreationPipeline
    library: StorybookLibrary
    entitlements: EntitlementEngine
    reconciler: WebhookReconciler


def build_services(
    http_client: httpx.AsyncClient,
    *,
    rest_config: RestStoreConfig | None = None,
    object_store_config: ObjectStoreConfig | None = None,
    billing_config: BillingConfig | None = None,
) -> StorybookServices:
    """
    Build every service against the configured stores and providers.

    Raises
    ------
    ConfigurationError
        If the relational store or the object store is not configured.
    """
    rest_config = rest_config or RestStoreConfig.from_env()
    if rest_config is None:
        raise ConfigurationError(
            "SUPABASE_URL (or VITE_SUPABASE_URL) and SUPABASE_SECRET_KEY must be configured."
        )
    object_store_config = object_store_config or ObjectStoreConfig.from_env()
    if object_store_config is None:
        raise ConfigurationError(
            "CLOUDFLARE_R2_ENDPOINT, CLOUDFLARE_R2_BUCKET and the R2 access key pair must be configured."
        )

    store = RestStoreClient(rest_config, http_client=http_client)
    object_store = ObjectStoreClient(object_store_config)
    entitlements = EntitlementEngine(store)

    pipeline = StorybookCreationPipeline(
        entitlements=entitlements,
        story_generator=StoryTextGenerator(),
        asset_orchestrator=AssetGenerationOrchestrator(
            image_generator=build_image_generator(),
            speech_synthesizer=LiteLLMSpeechSynthesizer(),
            http_client=http_client,
        ),
        persistence=PersistenceSaga(store=store, object_store=object_store),
    )
    return StorybookServices(
        pipeline=pipeline,
        library=StorybookLibrary(store, public_base_url=object_store_config.public_base_url),
        entitlements=entitlements,
        reconciler=WebhookReconciler(store, config=billing_config or BillingConfig.from_env()),
    )
