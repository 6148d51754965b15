"""
Quota and subscription entitlement checks for storybook creation.

A user without a subscription in ``trialing``/``active`` state is on the free
plan and draws from a lifetime free quota. Paid users draw from a daily
counter whose day is evaluated in a fixed reference timezone. The counter is
never reset by a job: a stored date other than today simply reads as zero.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from doodlebook.common.config import resolve_reference_timezone
from doodlebook.common.errors import QuotaConflictError, QuotaExceededError, StoreError
from doodlebook.storage.rest import RestStoreClient, eq, is_null

from .plans import (
    DEFAULT_FREE_STORY_QUOTA_TOTAL,
    FREE_PLAN,
    PLAN_CATALOGUE,
    Plan,
    normalize_plan_code,
    paid_plan_for,
)

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_TABLE = "subscriptions"
USAGE_QUOTAS_TABLE = "usage_quotas"

SUBSCRIPTION_STATUSES = ("trialing", "active", "past_due", "canceled", "incomplete", "unpaid")
PAID_ACCESS_STATUSES = frozenset({"trialing", "active"})

SUBSCRIPTION_COLUMNS = (
    "status,plan_code,trial_start_at,trial_end_at,current_period_start,"
    "current_period_end,provider_customer_id,provider_subscription_id"
)
QUOTA_COLUMNS = (
    "free_story_quota_total,free_story_quota_used,daily_story_quota_used,daily_story_quota_date"
)

DENIAL_FREE_TOTAL = "free_total"
DENIAL_DAILY_LIMIT = "daily_limit"


def normalize_subscription_status(value: Any) -> str | None:
    """Status as stored; ``incomplete_expired`` collapses to ``incomplete``, unknown values to ``None``."""
    if value in SUBSCRIPTION_STATUSES:
        return value
    if value == "incomplete_expired":
        return "incomplete"
    return None


def normalize_provider_status(value: Any) -> str:
    """Status to store for a provider event; anything unrecognized becomes ``incomplete``."""
    if value in SUBSCRIPTION_STATUSES and value != "incomplete":
        return value
    return "incomplete"


def effective_daily_usage(stored_used: int, stored_date: date | None, today: date) -> int:
    """
    Daily counter as of ``today``: the stored value only counts when it was stamped today.
    """
    if stored_date is None or stored_date != today:
        return 0
    return max(0, stored_used)


def _non_negative_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None
    return None


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


@dataclass(frozen=True)
class SubscriptionState:
    status: str
    plan_code: str | None = None
    trial_start_at: str | None = None
    trial_end_at: str | None = None
    current_period_start: str | None = None
    current_period_end: str | None = None
    provider_customer_id: str | None = None
    provider_subscription_id: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "SubscriptionState | None":
        status = normalize_subscription_status(row.get("status"))
        if status is None:
            return None

        return cls(
            status=status,
            plan_code=normalize_plan_code(row.get("plan_code")) or _clean(row.get("plan_code")),
            trial_start_at=_clean(row.get("trial_start_at")),
            trial_end_at=_clean(row.get("trial_end_at")),
            current_period_start=_clean(row.get("current_period_start")),
            current_period_end=_clean(row.get("current_period_end")),
            provider_customer_id=_clean(row.get("provider_customer_id")),
            provider_subscription_id=_clean(row.get("provider_subscription_id")),
        )

    @property
    def has_paid_access(self) -> bool:
        return self.status in PAID_ACCESS_STATUSES

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "planCode": self.plan_code,
            "trialStartAt": self.trial_start_at,
            "trialEndAt": self.trial_end_at,
            "currentPeriodStart": self.current_period_start,
            "currentPeriodEnd": self.current_period_end,
            "providerCustomerId": self.provider_customer_id,
            "providerSubscriptionId": self.provider_subscription_id,
        }


@dataclass(frozen=True)
class QuotaState:
    """
    One user's usage row. ``free_used`` is clamped to ``free_total``;
    ``daily_used`` and ``daily_date`` are the stored, not the effective, values.
    """

    free_total: int = DEFAULT_FREE_STORY_QUOTA_TOTAL
    free_used: int = 0
    daily_used: int = 0
    daily_date: date | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuotaState | None":
        total = _non_negative_int(row.get("free_story_quota_total"))
        used = _non_negative_int(row.get("free_story_quota_used"))
        if total is None or used is None:
            return None

        return cls(
            free_total=total,
            free_used=min(total, used),
            daily_used=_non_negative_int(row.get("daily_story_quota_used")) or 0,
            daily_date=_parse_date(row.get("daily_story_quota_date")),
        )

    @property
    def remaining_free(self) -> int:
        return max(0, self.free_total - self.free_used)

    def daily_usage_on(self, today: date) -> int:
        return effective_daily_usage(self.daily_used, self.daily_date, today)

    def to_payload(self, today: date) -> dict[str, Any]:
        return {
            "freeStoryQuotaTotal": self.free_total,
            "freeStoryQuotaUsed": self.free_used,
            "remainingFreeStories": self.remaining_free,
            "dailyStoryQuotaUsed": self.daily_usage_on(today),
        }


def resolve_current_plan(subscription: SubscriptionState | None) -> Plan:
    if subscription is not None and subscription.has_paid_access:
        return paid_plan_for(subscription.plan_code)
    return FREE_PLAN


def evaluate_access(plan: Plan, quota: QuotaState, today: date) -> str | None:
    """
    Return the denial reason for a creation attempt, or ``None`` when it is allowed.
    """
    if plan.daily_limit is None:
        return None if quota.free_used < quota.free_total else DENIAL_FREE_TOTAL
    return None if quota.daily_usage_on(today) < plan.daily_limit else DENIAL_DAILY_LIMIT


@dataclass(frozen=True)
class AccessSnapshot:
    subscription: SubscriptionState | None
    quota: QuotaState
    current_plan: Plan
    today: date
    denial_reason: str | None = None

    @property
    def can_create(self) -> bool:
        return self.denial_reason is None

    def to_payload(self) -> dict[str, Any]:
        quota = self.quota.to_payload(self.today)
        quota["dailyStoryQuotaLimit"] = self.current_plan.daily_limit
        return {
            "subscription": self.subscription.to_payload() if self.subscription else None,
            "quota": quota,
            "currentPlan": {"code": self.current_plan.code, "name": self.current_plan.name},
            "plans": [plan.to_payload() for plan in PLAN_CATALOGUE],
            "canCreate": self.can_create,
        }


class EntitlementEngine:
    """
    Reads subscription and quota rows, gates creation and debits after success.

    The gate is advisory; :meth:`debit` re-reads both rows and updates the
    quota with a compare-and-set filter on the values it read, retrying a
    bounded number of times when another request changed the row first.
    """

    def __init__(
        self,
        store: RestStoreClient,
        *,
        reference_timezone: ZoneInfo | None = None,
        clock: Callable[[], datetime] | None = None,
        default_free_total: int = DEFAULT_FREE_STORY_QUOTA_TOTAL,
        max_debit_attempts: int = 3,
    ) -> None:
        self._store = store
        self._timezone = reference_timezone or resolve_reference_timezone()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._default_free_total = default_free_total
        self._max_debit_attempts = max(1, max_debit_attempts)

    def today(self) -> date:
        return self._clock().astimezone(self._timezone).date()

    async def fetch_subscription(self, user_id: str) -> SubscriptionState | None:
        row = await self._store.select_one(
            SUBSCRIPTIONS_TABLE,
            columns=SUBSCRIPTION_COLUMNS,
            filters={"user_id": eq(user_id)},
        )
        if row is None:
            return None

        subscription = SubscriptionState.from_row(row)
        if subscription is None:
            raise StoreError(502, "Invalid subscription row returned by the store.")
        return subscription

    async def ensure_quota(self, user_id: str) -> QuotaState:
        """Read the user's quota row, creating it with the default free total on first use."""
        row = await self._store.select_one(
            USAGE_QUOTAS_TABLE,
            columns=QUOTA_COLUMNS,
            filters={"user_id": eq(user_id)},
        )
        if row is not None:
            quota = QuotaState.from_row(row)
            if quota is None:
                raise StoreError(502, "Invalid usage quota row returned by the store.")
            return quota

        await self._store.insert(
            USAGE_QUOTAS_TABLE,
            {
                "user_id": user_id,
                "free_story_quota_total": self._default_free_total,
                "free_story_quota_used": 0,
                "daily_story_quota_used": 0,
            },
            on_conflict="user_id",
            ignore_duplicates=True,
        )
        return QuotaState(free_total=self._default_free_total)

    async def _read_state(self, user_id: str) -> tuple[SubscriptionState | None, QuotaState]:
        subscription, quota = await asyncio.gather(
            self.fetch_subscription(user_id),
            self.ensure_quota(user_id),
        )
        return subscription, quota

    async def snapshot(self, user_id: str) -> AccessSnapshot:
        subscription, quota = await self._read_state(user_id)
        today = self.today()
        plan = resolve_current_plan(subscription)
        return AccessSnapshot(
            subscription=subscription,
            quota=quota,
            current_plan=plan,
            today=today,
            denial_reason=evaluate_access(plan, quota, today),
        )

    async def ensure_can_create(self, user_id: str) -> AccessSnapshot:
        """
        Raises
        ------
        QuotaExceededError
            With ``reason`` ``free_total`` or ``daily_limit``.
        """
        snapshot = await self.snapshot(user_id)
        if snapshot.denial_reason is not None:
            raise QuotaExceededError(snapshot.denial_reason)
        return snapshot

    async def debit(self, user_id: str) -> QuotaState:
        """
        Consume one creation from the bucket that applies to the user right now.

        Raises
        ------
        QuotaConflictError
            If the bucket is already exhausted, or the row kept changing underneath us.
        """
        for attempt in range(1, self._max_debit_attempts + 1):
            subscription, quota = await self._read_state(user_id)
            today = self.today()
            plan = resolve_current_plan(subscription)

            if plan.daily_limit is None:
                if quota.free_used >= quota.free_total:
                    raise QuotaConflictError("Free story quota is exhausted.")
                expected = QuotaState(
                    free_total=quota.free_total,
                    free_used=quota.free_used + 1,
                    daily_used=quota.daily_used,
                    daily_date=quota.daily_date,
                )
                values: dict[str, Any] = {"free_story_quota_used": expected.free_used}
                filters = {
                    "user_id": eq(user_id),
                    "free_story_quota_used": eq(quota.free_used),
                }
            else:
                current = quota.daily_usage_on(today)
                if current >= plan.daily_limit:
                    raise QuotaConflictError("Daily story quota is exhausted.")
                expected = QuotaState(
                    free_total=quota.free_total,
                    free_used=quota.free_used,
                    daily_used=current + 1,
                    daily_date=today,
                )
                values = {
                    "daily_story_quota_used": expected.daily_used,
                    "daily_story_quota_date": today.isoformat(),
                }
                filters = {
                    "user_id": eq(user_id),
                    "daily_story_quota_used": eq(quota.daily_used),
                    "daily_story_quota_date": (
                        eq(quota.daily_date.isoformat()) if quota.daily_date else is_null()
                    ),
                }

            rows = await self._store.update(
                USAGE_QUOTAS_TABLE, values, filters=filters, returning=True
            )
            if rows:
                return QuotaState.from_row(rows[0]) or expected

            logger.info(
                "Quota row for user %s changed during debit (attempt %s/%s).",
                user_id,
                attempt,
                self._max_debit_attempts,
            )

        raise QuotaConflictError("Usage quota changed concurrently; debit was not applied.")
