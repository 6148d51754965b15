"""
Plan catalogue and billing-provider plan-code resolution.
"""

from __future__ import annotations

from dataclasses import dataclass

from doodlebook.common.config import BillingConfig

DEFAULT_FREE_STORY_QUOTA_TOTAL = 2
DEFAULT_PAID_PLAN = "standard"

# Legacy single-plan code still present on older subscription rows.
LEGACY_PLAN_ALIASES = {"monthly_unlimited_6900_krw": "standard"}


@dataclass(frozen=True)
class Plan:
    """One entry of the plan catalogue shown to users."""

    code: str
    name: str
    daily_limit: int | None = None

    @property
    def is_paid(self) -> bool:
        return self.daily_limit is not None

    def to_payload(self) -> dict[str, object]:
        return {"code": self.code, "name": self.name, "dailyLimit": self.daily_limit}


FREE_PLAN = Plan(code="free", name="Free")
STANDARD_PLAN = Plan(code="standard", name="Standard", daily_limit=30)
PRO_PLAN = Plan(code="pro", name="Pro", daily_limit=60)

PLAN_CATALOGUE: tuple[Plan, ...] = (FREE_PLAN, STANDARD_PLAN, PRO_PLAN)
PAID_PLANS = {plan.code: plan for plan in PLAN_CATALOGUE if plan.is_paid}


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def normalize_plan_code(raw: object) -> str | None:
    """
    Map a stored or provider plan code onto ``standard``/``pro``; unknown codes yield ``None``.
    """
    text = _clean(raw)
    if not text:
        return None

    lowered = text.lower()
    if lowered in PAID_PLANS:
        return lowered
    return LEGACY_PLAN_ALIASES.get(lowered)


def paid_plan_for(code: object) -> Plan:
    """Paid plan for a stored plan code, defaulting to standard."""
    return PAID_PLANS[normalize_plan_code(code) or DEFAULT_PAID_PLAN]


def resolve_canonical_plan_code(raw: object, config: BillingConfig) -> str | None:
    """
    Resolve a provider plan code, honouring the configured per-plan aliases.
    """
    text = _clean(raw)
    if not text:
        return None

    canonical = normalize_plan_code(text)
    if canonical:
        return canonical

    lowered = text.lower()
    if config.standard_plan_alias and config.standard_plan_alias.lower() == lowered:
        return "standard"
    if config.pro_plan_alias and config.pro_plan_alias.lower() == lowered:
        return "pro"
    return None


def resolve_plan_code_from_product_id(product_id: object, config: BillingConfig) -> str | None:
    text = _clean(product_id)
    if not text:
        return None
    if config.pro_product_id and config.pro_product_id == text:
        return "pro"
    if config.standard_product_id and config.standard_product_id == text:
        return "standard"
    return None


def resolve_fallback_plan_code(config: BillingConfig) -> str:
    return resolve_canonical_plan_code(config.plan_code, config) or DEFAULT_PAID_PLAN


def resolve_subscription_plan_code(
    *,
    metadata_plan_code: object,
    product_id: object,
    config: BillingConfig,
) -> str:
    """
    Plan code for a subscription event: metadata, then product id, then configured fallback.
    """
    return (
        resolve_canonical_plan_code(metadata_plan_code, config)
        or resolve_plan_code_from_product_id(product_id, config)
        or resolve_fallback_plan_code(config)
    )
