"""
Billing-provider webhook verification and subscription reconciliation.

Deliveries are at-least-once. Each event id is recorded in
``polar_webhook_events`` after it has been applied, and a delivery whose id is
already recorded is acknowledged without being applied again.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from standardwebhooks.webhooks import Webhook, WebhookVerificationError

from doodlebook.common.config import BillingConfig
from doodlebook.common.errors import StoreError, WebhookPayloadError, WebhookSignatureError
from doodlebook.storage.rest import RestStoreClient, eq

from .entitlement import SUBSCRIPTIONS_TABLE, normalize_provider_status
from .plans import resolve_subscription_plan_code

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS_TABLE = "polar_webhook_events"
EVENT_ID_HEADERS = ("webhook-id", "x-webhook-id")


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def accepted(cls, *, duplicate: bool = False) -> "WebhookResult":
        body: dict[str, Any] = {"received": True}
        if duplicate:
            body["duplicate"] = True
        return cls(status_code=202, body=body)

    @classmethod
    def error(cls, status_code: int, message: str, detail: str | None = None) -> "WebhookResult":
        body: dict[str, Any] = {"error": message}
        if detail:
            body["detail"] = detail
        return cls(status_code=status_code, body=body)


def _lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def build_webhook_verifier(secret: str) -> Webhook:
    """
    Standard Webhooks verifier keyed with the raw bytes of the provider secret.

    The provider SDK base64-encodes its plain-text secret before handing it to
    the Standard Webhooks library, which decodes it back to the signing key.
    """
    return Webhook(base64.b64encode(secret.encode("utf-8")).decode("ascii"))


def verify_webhook_event(raw_body: bytes, headers: Mapping[str, str], secret: str) -> dict[str, Any]:
    """
    Check the signature and timestamp of a delivery and return the decoded event.

    Raises
    ------
    WebhookSignatureError
        If the signature headers are missing, the timestamp is outside the
        five-minute tolerance, or no ``v1`` signature matches.
    WebhookPayloadError
        If the delivery is malformed or the event is not an object with a ``type``.
    """
    try:
        event = build_webhook_verifier(secret).verify(raw_body, dict(headers))
    except WebhookVerificationError as exc:
        raise WebhookSignatureError(str(exc)) from exc
    except ValueError as exc:
        raise WebhookPayloadError("Webhook delivery is malformed.") from exc

    if not isinstance(event, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object.")
    if not _clean(event.get("type")):
        raise WebhookPayloadError("Webhook event is missing its type.")
    return event


class WebhookReconciler:
    """
    Applies subscription events from the billing provider to the ``subscriptions`` table.
    """

    def __init__(
        self,
        store: RestStoreClient,
        *,
        config: BillingConfig | None = None,
    ) -> None:
        self._store = store
        self._config = config or BillingConfig.from_env()

    async def handle(self, headers: Mapping[str, str], raw_body: bytes | str) -> WebhookResult:
        body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
        secret = self._config.webhook_secret
        if not secret:
            return WebhookResult.error(500, "POLAR_WEBHOOK_SECRET must be configured.")

        lowered = _lower_headers(headers)
        event_id = next(
            (value for value in (_clean(lowered.get(name)) for name in EVENT_ID_HEADERS) if value),
            None,
        )
        if not event_id:
            return WebhookResult.error(400, "Missing webhook-id header.")

        try:
            if await self._is_processed(event_id):
                return WebhookResult.accepted(duplicate=True)
        except StoreError as exc:
            return WebhookResult.error(502, "Failed to resolve webhook deduplication status.", exc.message)

        try:
            event = verify_webhook_event(body, headers, secret)
        except WebhookSignatureError as exc:
            logger.warning("Rejected webhook %s: %s", event_id, exc.message)
            return WebhookResult.error(403, "Invalid webhook signature.")
        except WebhookPayloadError as exc:
            logger.warning("Rejected malformed webhook %s: %s", event_id, exc.message)
            return WebhookResult.error(400, "Invalid webhook payload.")

        event_type = event["type"].strip()
        data = event.get("data")
        if not isinstance(data, Mapping):
            data = {}

        if event_type.startswith("subscription."):
            customer = data.get("customer")
            user_id = (
                _clean(_pick(customer, "external_id", "externalId"))
                if isinstance(customer, Mapping)
                else None
            )
            if not user_id:
                return WebhookResult.error(400, "Subscription event is missing customer external ID.")

            try:
                await self._upsert_subscription(user_id, event_id, data)
            except StoreError as exc:
                logger.error("Subscription upsert for webhook %s failed: %s", event_id, exc.message)
                return WebhookResult.error(
                    502, "Failed to upsert subscription state from webhook.", exc.message
                )

        try:
            await self._store.insert(
                WEBHOOK_EVENTS_TABLE,
                {"event_id": event_id, "event_type": event_type, "payload": event},
            )
        except StoreError as exc:
            if exc.status == 409:
                return WebhookResult.accepted(duplicate=True)
            return WebhookResult.error(502, "Failed to persist webhook event marker.", exc.message)

        logger.info("Processed webhook %s (%s).", event_id, event_type)
        return WebhookResult.accepted()

    async def _is_processed(self, event_id: str) -> bool:
        row = await self._store.select_one(
            WEBHOOK_EVENTS_TABLE,
            columns="event_id",
            filters={"event_id": eq(event_id)},
        )
        return row is not None

    async def _upsert_subscription(self, user_id: str, event_id: str, data: Mapping[str, Any]) -> None:
        metadata = data.get("metadata")
        metadata_plan_code = (
            _pick(metadata, "planCode", "plan_code") if isinstance(metadata, Mapping) else None
        )
        plan_code = resolve_subscription_plan_code(
            metadata_plan_code=metadata_plan_code,
            product_id=_pick(data, "product_id", "productId"),
            config=self._config,
        )

        await self._store.insert(
            SUBSCRIPTIONS_TABLE,
            {
                "user_id": user_id,
                "provider": "polar",
                "status": normalize_provider_status(data.get("status")),
                "plan_code": plan_code,
                "trial_start_at": _clean(_pick(data, "trial_start", "trialStart")),
                "trial_end_at": _clean(_pick(data, "trial_end", "trialEnd")),
                "current_period_start": _clean(
                    _pick(data, "current_period_start", "currentPeriodStart")
                ),
                "current_period_end": _clean(_pick(data, "current_period_end", "currentPeriodEnd")),
                "provider_customer_id": _clean(_pick(data, "customer_id", "customerId")),
                "provider_subscription_id": _clean(data.get("id")),
                "last_webhook_event_id": event_id,
            },
            on_conflict="user_id",
            merge_duplicates=True,
        )
