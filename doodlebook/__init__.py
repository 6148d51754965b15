"""
Doodle storybook package exposing story parsing, generation, persistence and entitlement tooling.
"""

from .billing import EntitlementEngine, WebhookReconciler
from .pipeline import (
    AssetGenerationOrchestrator,
    PersistenceSaga,
    StorybookCreationPipeline,
    StorybookLibrary,
)
from .story_generation import StorybookRequest, parse_story_outcome, parse_story_output

__all__ = [
    "AssetGenerationOrchestrator",
    "EntitlementEngine",
    "PersistenceSaga",
    "StorybookCreationPipeline",
    "StorybookLibrary",
    "StorybookRequest",
    "WebhookReconciler",
    "parse_story_outcome",
    "parse_story_output",
]
