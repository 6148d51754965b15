"""
Relational and object storage clients.
"""

from .object_store import ObjectStoreClient, image_key, narration_key, resolve_public_url
from .rest import RestStoreClient, eq, in_, is_null, resolve_error_message

__all__ = [
    "ObjectStoreClient",
    "RestStoreClient",
    "eq",
    "image_key",
    "in_",
    "is_null",
    "narration_key",
    "resolve_error_message",
    "resolve_public_url",
]
