"""
Common utilities shared across doodlebook modules.
"""

from .config import (
    BillingConfig,
    ObjectStoreConfig,
    RestStoreConfig,
    resolve_reference_timezone,
)
from .errors import (
    ConfigurationError,
    ContentContractError,
    FulfillmentError,
    PersistenceError,
    ProviderError,
    QuotaConflictError,
    QuotaExceededError,
    StoreError,
    StorybookError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from .llm import ChatResult, CompletionCallable, call_chat_completion

__all__ = [
    "BillingConfig",
    "ChatResult",
    "CompletionCallable",
    "ConfigurationError",
    "ContentContractError",
    "FulfillmentError",
    "ObjectStoreConfig",
    "PersistenceError",
    "ProviderError",
    "QuotaConflictError",
    "QuotaExceededError",
    "RestStoreConfig",
    "StoreError",
    "StorybookError",
    "WebhookPayloadError",
    "WebhookSignatureError",
    "call_chat_completion",
    "resolve_reference_timezone",
]
