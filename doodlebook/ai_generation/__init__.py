"""
Illustration and narration generation for doodle storybooks.
"""

from .image_service import ImageGenerator, LiteLLMImageGenerator, build_image_generator
from .media import MediaPayload, materialize_media
from .prompting import (
    IMAGE_ROLES,
    ScenePrompt,
    build_narration_instructions,
    build_scene_prompt,
)
from .replicate_service import ReplicateImageGenerator
from .speech_service import LiteLLMSpeechSynthesizer

__all__ = [
    "IMAGE_ROLES",
    "ImageGenerator",
    "LiteLLMImageGenerator",
    "LiteLLMSpeechSynthesizer",
    "MediaPayload",
    "ReplicateImageGenerator",
    "ScenePrompt",
    "build_image_generator",
    "build_narration_instructions",
    "build_scene_prompt",
    "materialize_media",
]
