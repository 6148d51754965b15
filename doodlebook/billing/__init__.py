"""
Plans, quota entitlement and billing webhook reconciliation.
"""

from .entitlement import (
    AccessSnapshot,
    EntitlementEngine,
    QuotaState,
    SubscriptionState,
    effective_daily_usage,
    evaluate_access,
)
from .plans import PLAN_CATALOGUE, Plan, normalize_plan_code, resolve_subscription_plan_code
from .webhooks import (
    WebhookReconciler,
    WebhookResult,
    build_webhook_verifier,
    verify_webhook_event,
)

__all__ = [
    "AccessSnapshot",
    "EntitlementEngine",
    "PLAN_CATALOGUE",
    "Plan",
    "QuotaState",
    "SubscriptionState",
    "WebhookReconciler",
    "WebhookResult",
    "build_webhook_verifier",
    "effective_daily_usage",
    "evaluate_access",
    "normalize_plan_code",
    "resolve_subscription_plan_code",
    "verify_webhook_event",
]
