"""
Normalize generated media into a canonical inline payload.

Image providers return base64 strings, data URLs, raw bytes, fetchable URLs
or SDK file objects; speech providers return raw bytes. Everything downstream
works with :class:`MediaPayload` only.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Iterable as IterableABC
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_DATA_URL_PATTERN = re.compile(r"^data:(?P<type>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*);base64,(?P<data>.*)$", re.S)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/aac": "aac",
}


@dataclass(frozen=True)
class MediaPayload:
    """Binary media with its content type."""

    content_type: str
    data: bytes

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    @property
    def extension(self) -> str:
        return _EXTENSIONS.get(self.content_type, "bin")

    @classmethod
    def from_data_url(cls, value: str) -> "MediaPayload | None":
        match = _DATA_URL_PATTERN.match(value.strip())
        if not match:
            return None
        data = _decode_base64(match.group("data"))
        if not data:
            return None
        return cls(content_type=match.group("type") or "application/octet-stream", data=data)


def _decode_base64(value: str) -> bytes | None:
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError):
        return None


def _is_url(value: str) -> bool:
    return value.lower().startswith(("http://", "https://"))


async def fetch_media(
    url: str,
    *,
    http_client: httpx.AsyncClient,
    default_content_type: str,
) -> MediaPayload | None:
    """
    Download a provider-hosted asset. Non-success responses and empty bodies yield ``None``.
    """
    response = await http_client.get(url)
    if response.status_code >= 400:
        logger.warning("Fetching generated media failed with HTTP %s: %s", response.status_code, url)
        return None
    if not response.content:
        return None

    content_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
    return MediaPayload(content_type=content_type or default_content_type, data=response.content)


async def materialize_media(
    raw: Any,
    *,
    http_client: httpx.AsyncClient,
    default_content_type: str = "image/png",
) -> MediaPayload | None:
    """
    Convert any supported provider output into a :class:`MediaPayload`.

    URLs cost one extra fetch. Returns ``None`` for empty output.
    """
    if raw is None:
        return None

    if isinstance(raw, (bytes, bytearray)):
        return MediaPayload(content_type=default_content_type, data=bytes(raw)) if raw else None

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if text.startswith("data:"):
            return MediaPayload.from_data_url(text)
        if _is_url(text):
            return await fetch_media(
                text, http_client=http_client, default_content_type=default_content_type
            )
        data = _decode_base64(text)
        return MediaPayload(content_type=default_content_type, data=data) if data else None

    if isinstance(raw, MappingABC):
        inline = raw.get("b64_json") or raw.get("result")
        return await materialize_media(
            inline or raw.get("url"),
            http_client=http_client,
            default_content_type=default_content_type,
        )

    # SDK objects: litellm ImageObject exposes b64_json/url, Replicate FileOutput exposes url.
    inline = getattr(raw, "b64_json", None)
    if isinstance(inline, str) and inline:
        return await materialize_media(
            inline, http_client=http_client, default_content_type=default_content_type
        )
    url = getattr(raw, "url", None)
    if isinstance(url, str) and url:
        return await materialize_media(
            url, http_client=http_client, default_content_type=default_content_type
        )

    if isinstance(raw, IterableABC):
        for item in raw:
            payload = await materialize_media(
                item, http_client=http_client, default_content_type=default_content_type
            )
            if payload is not None:
                return payload
        return None

    logger.warning("Unsupported generated media output of type %s.", type(raw).__name__)
    return None
