"""Tests for normalizing provider media output."""

import base64
from types import SimpleNamespace

import pytest

from conftest import PNG_BYTES
from doodlebook.ai_generation.media import MediaPayload, materialize_media

ENCODED = base64.b64encode(PNG_BYTES).decode("ascii")


class TestMediaPayload:

    def test_data_url_round_trip(self):
        payload = MediaPayload.from_data_url(f"data:image/png;base64,{ENCODED}")

        assert payload == MediaPayload(content_type="image/png", data=PNG_BYTES)
        assert payload.data_url == f"data:image/png;base64,{ENCODED}"
        assert payload.extension == "png"

    def test_invalid_data_url(self):
        assert MediaPayload.from_data_url("data:image/png,not-base64") is None

    def test_unknown_extension(self):
        assert MediaPayload(content_type="application/x-thing", data=b"x").extension == "bin"


@pytest.mark.asyncio
class TestMaterializeMedia:

    async def test_base64_string(self, http_client):
        payload = await materialize_media(ENCODED, http_client=http_client)
        assert payload.data == PNG_BYTES
        assert payload.content_type == "image/png"

    async def test_mapping_with_b64_json(self, http_client):
        payload = await materialize_media({"b64_json": ENCODED}, http_client=http_client)
        assert payload.data == PNG_BYTES

    async def test_raw_bytes_use_default_content_type(self, http_client):
        payload = await materialize_media(
            b"ID3audio", http_client=http_client, default_content_type="audio/mpeg"
        )
        assert payload == MediaPayload(content_type="audio/mpeg", data=b"ID3audio")

    async def test_url_is_fetched(self, http_client, media_host):
        media_host.files["https://media.test/out.webp"] = ("image/webp", b"webp-bytes")

        payload = await materialize_media("https://media.test/out.webp", http_client=http_client)

        assert payload == MediaPayload(content_type="image/webp", data=b"webp-bytes")

    async def test_missing_url_yields_none(self, http_client):
        assert await materialize_media("https://media.test/missing.png", http_client=http_client) is None

    async def test_sdk_object_and_list(self, http_client, media_host):
        media_host.files["https://media.test/1.png"] = ("image/png", PNG_BYTES)
        output = [SimpleNamespace(url="https://media.test/1.png")]

        payload = await materialize_media(output, http_client=http_client)

        assert payload.data == PNG_BYTES

    @pytest.mark.parametrize("raw", [None, "", b"", [], {"url": None}])
    async def test_empty_output_yields_none(self, http_client, raw):
        assert await materialize_media(raw, http_client=http_client) is None
