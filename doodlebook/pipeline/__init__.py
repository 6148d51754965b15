"""
Storybook creation pipeline: asset generation, persistence and retrieval.
"""

from .assets import AssetGenerationOrchestrator, GeneratedAssets
from .library import StorybookLibrary
from .persistence import (
    PersistenceSaga,
    SagaOutcome,
    SagaStep,
    StorybookBundle,
    build_storybook_bundle,
    run_saga,
)
from .pipeline import ProgressCallback, StorybookCreationPipeline, load_request_file
from .records import OriginDetailRecord, OutputDetailRecord, StorybookRecord
from .response import build_creation_response, build_storybook_detail_response

__all__ = [
    "AssetGenerationOrchestrator",
    "GeneratedAssets",
    "OriginDetailRecord",
    "OutputDetailRecord",
    "PersistenceSaga",
    "ProgressCallback",
    "SagaOutcome",
    "SagaStep",
    "StorybookBundle",
    "StorybookCreationPipeline",
    "StorybookLibrary",
    "StorybookRecord",
    "build_creation_response",
    "build_storybook_bundle",
    "build_storybook_detail_response",
    "load_request_file",
    "run_saga",
]
