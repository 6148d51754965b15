"""
Binary asset storage in an S3-compatible bucket (Cloudflare R2) through boto3.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from doodlebook.common.config import ObjectStoreConfig
from doodlebook.common.errors import StoreError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000


def image_key(user_id: str, storybook_id: str, name: str, extension: str = "png") -> str:
    return f"{user_id}/{storybook_id}/images/{name}.{extension}"


def narration_key(user_id: str, storybook_id: str, page: int, extension: str = "mp3") -> str:
    return f"{user_id}/{storybook_id}/tts/page-{page:02d}.{extension}"


def resolve_public_url(key_or_url: str | None, public_base_url: str | None) -> str | None:
    """
    Map a stored key to a fetchable URL.

    Absolute URLs, protocol-relative URLs and data URLs are returned unchanged.
    Keys resolve to ``None`` when no public base URL is configured.
    """
    if not isinstance(key_or_url, str):
        return None

    value = key_or_url.strip()
    if not value:
        return None
    if value.startswith(("http://", "https://", "data:", "//")):
        return value
    if not public_base_url:
        return None
    return f"{public_base_url.rstrip('/')}/{value.lstrip('/')}"


def _client_error_status(exc: ClientError) -> int:
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return status if isinstance(status, int) else 502


def build_s3_client(config: ObjectStoreConfig) -> Any:
    return boto3.client(
        "s3",
        region_name=config.region,
        endpoint_url=config.endpoint,
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
    )


class ObjectStoreClient:
    """
    Upload and delete storybook assets in the S3-compatible bucket.

    boto3 is synchronous, so every call runs in a worker thread. Uploaded
    objects are immutable; every key is written once per storybook.
    """

    def __init__(self, config: ObjectStoreConfig, *, s3_client: Any = None) -> None:
        self._config = config
        self._s3 = s3_client or build_s3_client(config)

    @property
    def public_base_url(self) -> str | None:
        return self._config.public_base_url

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self._s3.put_object,
                Bucket=self._config.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=self._config.cache_control,
            )
        except ClientError as exc:
            raise StoreError(_client_error_status(exc), f"Failed to upload '{key}' to the object store.") from exc
        except BotoCoreError as exc:
            raise StoreError(502, f"Failed to reach the object store for '{key}'.") from exc
        return key

    async def delete_many(self, keys: Sequence[str]) -> list[str]:
        """
        Delete ``keys`` in batches; returns the keys the store refused to delete.
        """
        failed: list[str] = []
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = await asyncio.to_thread(
                    self._s3.delete_objects,
                    Bucket=self._config.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as exc:
                logger.warning("Batch delete of %s objects failed: %s", len(batch), exc)
                failed.extend(batch)
                continue

            for error in response.get("Errors", []):
                logger.warning("Failed to delete '%s': %s", error.get("Key"), error.get("Message"))
                failed.append(error.get("Key"))
        return failed
