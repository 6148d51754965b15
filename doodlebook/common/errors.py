"""
Failure taxonomy shared by the storybook generation pipeline.

Every error carries the HTTP status it is surfaced with so the API layer can
translate it without knowing where it was raised.
"""

from __future__ import annotations


class StorybookError(Exception):
    """Base class for all pipeline failures."""

    status_code = 500
    error_code = "STORYBOOK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, object]:
        return {"error": self.error_code, "detail": self.message}


class ConfigurationError(StorybookError):
    """Required settings are missing."""

    error_code = "CONFIGURATION_ERROR"


class ContentContractError(StorybookError):
    """The LLM output matched neither the structured nor the legacy schema."""

    status_code = 502
    error_code = "INVALID_STORY_OUTPUT"


class ProviderError(StorybookError):
    """An upstream generation provider could not be reached or returned nothing usable."""

    status_code = 502
    error_code = "PROVIDER_FAILED"


class FulfillmentError(StorybookError):
    """Some required illustrations or narrations were not produced."""

    status_code = 502
    error_code = "FULFILLMENT_INCOMPLETE"

    def __init__(
        self,
        message: str,
        *,
        missing_images: tuple[str, ...] = (),
        missing_narrations: tuple[int, ...] = (),
    ) -> None:
        super().__init__(message)
        self.missing_images = missing_images
        self.missing_narrations = missing_narrations

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["missingImages"] = list(self.missing_images)
        payload["missingNarrations"] = list(self.missing_narrations)
        return payload


class StoreError(StorybookError):
    """A relational or object store request failed."""

    status_code = 502
    error_code = "STORE_FAILED"

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class PersistenceError(StorybookError):
    """A persistence saga step failed; completed steps were compensated."""

    status_code = 502
    error_code = "PERSISTENCE_FAILED"

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(message)
        self.stage = stage

    def to_payload(self) -> dict[str, object]:
        payload = super().to_payload()
        payload["stage"] = self.stage
        return payload


class QuotaExceededError(StorybookError):
    """The user has no remaining quota in the bucket that applies to them."""

    status_code = 403
    error_code = "QUOTA_EXCEEDED"

    def __init__(self, reason: str, message: str | None = None) -> None:
        super().__init__(message or f"Storybook quota exceeded ({reason}).")
        self.reason = reason

    def to_payload(self) -> dict[str, object]:
        return {"error": self.error_code, "reason": self.reason, "detail": self.message}


class QuotaConflictError(StorybookError):
    """The quota was already exhausted when the debit was attempted."""

    status_code = 409
    error_code = "QUOTA_CONFLICT"


class WebhookSignatureError(StorybookError):
    """The webhook signature does not match the shared secret."""

    status_code = 403
    error_code = "INVALID_SIGNATURE"


class WebhookPayloadError(StorybookError):
    """The webhook request is missing required headers or fields."""

    status_code = 400
    error_code = "INVALID_WEBHOOK"
