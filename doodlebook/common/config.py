"""
Environment-driven configuration for the storybook services.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from zoneinfo import ZoneInfo

STORYBOOK_DB_SCHEMA = "doodle_storybook_db"
DEFAULT_REFERENCE_TIMEZONE = "Asia/Seoul"


def _env(*names: str) -> str | None:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None


@dataclass(frozen=True)
class RestStoreConfig:
    """
    Connection details for the relational store's REST interface.
    """

    base_url: str
    service_key: str
    schema: str = STORYBOOK_DB_SCHEMA

    @classmethod
    def from_env(cls) -> "RestStoreConfig | None":
        base_url = _env("SUPABASE_URL", "VITE_SUPABASE_URL")
        service_key = _env("SUPABASE_SECRET_KEY", "SUPABASE_SERVICE_ROLE_KEY")
        if not base_url or not service_key:
            return None

        return cls(
            base_url=base_url.rstrip("/"),
            service_key=service_key,
            schema=_env("SUPABASE_DB_SCHEMA") or STORYBOOK_DB_SCHEMA,
        )


@dataclass(frozen=True)
class ObjectStoreConfig:
    """
    Connection details for the S3-compatible asset bucket (Cloudflare R2).

    ``public_base_url`` is used only when resolving stored keys to URLs that
    clients can fetch; uploads always go through the S3 API at ``endpoint``.
    """

    endpoint: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    region: str = "auto"
    public_base_url: str | None = None
    cache_control: str = "public, max-age=31536000, immutable"

    @classmethod
    def from_env(cls) -> "ObjectStoreConfig | None":
        endpoint = _env("CLOUDFLARE_R2_ENDPOINT", "S3_ENDPOINT")
        bucket = _env("CLOUDFLARE_R2_BUCKET", "R2_BUCKET")
        access_key_id = _env("CLOUDFLARE_R2_ACCESS_KEY_ID", "AWS_ACCESS_KEY_ID")
        secret_access_key = _env("CLOUDFLARE_R2_SECRET_ACCESS_KEY", "AWS_SECRET_ACCESS_KEY")
        if not endpoint or not bucket or not access_key_id or not secret_access_key:
            return None

        public_base_url = _env("CLOUDFLARE_R2_PUBLIC_BASE_URL", "R2_PUBLIC_BASE_URL")
        return cls(
            endpoint=endpoint.rstrip("/"),
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            region=_env("CLOUDFLARE_R2_REGION", "S3_REGION") or "auto",
            public_base_url=public_base_url.rstrip("/") if public_base_url else None,
        )


@dataclass(frozen=True)
class BillingConfig:
    """
    Billing provider settings used for webhook verification and plan mapping.
    """

    webhook_secret: str | None = None
    standard_product_id: str | None = None
    pro_product_id: str | None = None
    plan_code: str | None = None
    standard_plan_alias: str | None = None
    pro_plan_alias: str | None = None

    @classmethod
    def from_env(cls) -> "BillingConfig":
        return cls(
            webhook_secret=_env("POLAR_WEBHOOK_SECRET"),
            standard_product_id=_env("POLAR_PRODUCT_ID_STANDARD", "POLAR_PRODUCT_ID"),
            pro_product_id=_env("POLAR_PRODUCT_ID_PRO"),
            plan_code=_env("POLAR_PLAN_CODE"),
            standard_plan_alias=_env("POLAR_PLAN_CODE_STANDARD"),
            pro_plan_alias=_env("POLAR_PLAN_CODE_PRO"),
        )


def resolve_reference_timezone(name: str | None = None) -> ZoneInfo:
    """
    Return the timezone that defines the calendar day for daily quotas.
    """
    return ZoneInfo(name or _env("QUOTA_REFERENCE_TIMEZONE") or DEFAULT_REFERENCE_TIMEZONE)


def resolve_story_model(model: str | None = None) -> str:
    return (
        model
        or _env("DOODLEBOOK_STORY_MODEL", "LITELLM_STORY_MODEL", "LITELLM_MODEL")
        or "gpt-4.1-mini"
    )


def resolve_llm_api_key(api_key: str | None = None) -> str | None:
    return api_key or _env("OPENAI_API_KEY", "LITELLM_API_KEY")


def resolve_prompt_version(version: str | None = None) -> str:
    return version or _env("DOODLEBOOK_PROMPT_VERSION") or "3"
