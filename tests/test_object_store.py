"""Tests for the S3-compatible asset store client."""

from unittest.mock import Mock

import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import Stubber

from doodlebook.common.config import ObjectStoreConfig
from doodlebook.common.errors import StoreError
from doodlebook.storage.object_store import (
    ObjectStoreClient,
    build_s3_client,
    image_key,
    narration_key,
    resolve_public_url,
)


@pytest.fixture()
def stubbed(object_store_config):
    s3 = build_s3_client(object_store_config)
    with Stubber(s3) as stubber:
        yield ObjectStoreClient(object_store_config, s3_client=s3), stubber


class TestKeys:

    def test_asset_key_layout(self):
        assert image_key("user-1", "book-1", "cover") == "user-1/book-1/images/cover.png"
        assert narration_key("user-1", "book-1", 3) == "user-1/book-1/tts/page-03.mp3"

    def test_public_url_resolution(self):
        assert resolve_public_url("a/b.png", "https://cdn.test/") == "https://cdn.test/a/b.png"
        assert resolve_public_url("https://x.test/a.png", None) == "https://x.test/a.png"
        assert resolve_public_url("a/b.png", None) is None


class TestConfig:

    def test_from_env_requires_credentials(self, monkeypatch):
        monkeypatch.setenv("CLOUDFLARE_R2_ENDPOINT", "https://acct.r2.cloudflarestorage.com/")
        monkeypatch.setenv("CLOUDFLARE_R2_BUCKET", "storybooks")
        for name in (
            "CLOUDFLARE_R2_ACCESS_KEY_ID",
            "AWS_ACCESS_KEY_ID",
            "CLOUDFLARE_R2_SECRET_ACCESS_KEY",
            "AWS_SECRET_ACCESS_KEY",
        ):
            monkeypatch.delenv(name, raising=False)

        assert ObjectStoreConfig.from_env() is None

        monkeypatch.setenv("CLOUDFLARE_R2_ACCESS_KEY_ID", "key")
        monkeypatch.setenv("CLOUDFLARE_R2_SECRET_ACCESS_KEY", "secret")
        config = ObjectStoreConfig.from_env()

        assert config.endpoint == "https://acct.r2.cloudflarestorage.com"
        assert config.region == "auto"

    def test_client_targets_configured_endpoint(self, object_store_config):
        s3 = build_s3_client(object_store_config)

        assert s3.meta.endpoint_url == object_store_config.endpoint


@pytest.mark.asyncio
class TestObjectStoreClient:

    async def test_put_sends_s3_put_object(self, object_store_config):
        s3 = Mock()
        client = ObjectStoreClient(object_store_config, s3_client=s3)

        key = await client.put("u/b/images/cover.png", b"png", content_type="image/png")

        assert key == "u/b/images/cover.png"
        s3.put_object.assert_called_once_with(
            Bucket="storybooks",
            Key="u/b/images/cover.png",
            Body=b"png",
            ContentType="image/png",
            CacheControl="public, max-age=31536000, immutable",
        )

    async def test_put_error_carries_http_status(self, stubbed):
        client, stubber = stubbed
        stubber.add_client_error(
            "put_object", service_error_code="AccessDenied", http_status_code=403
        )

        with pytest.raises(StoreError) as excinfo:
            await client.put("u/b/images/cover.png", b"png", content_type="image/png")

        assert excinfo.value.status == 403

    async def test_unreachable_store_is_bad_gateway(self, object_store_config):
        s3 = Mock()
        s3.put_object.side_effect = EndpointConnectionError(endpoint_url=object_store_config.endpoint)
        client = ObjectStoreClient(object_store_config, s3_client=s3)

        with pytest.raises(StoreError) as excinfo:
            await client.put("u/b/images/cover.png", b"png", content_type="image/png")

        assert excinfo.value.status == 502

    async def test_delete_many_reports_refused_keys(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "delete_objects",
            {
                "Deleted": [{"Key": "u/b/images/cover.png"}],
                "Errors": [{"Key": "u/b/images/end.png", "Code": "AccessDenied", "Message": "denied"}],
            },
        )

        failed = await client.delete_many(["u/b/images/cover.png", "u/b/images/end.png"])

        assert failed == ["u/b/images/end.png"]
        stubber.assert_no_pending_responses()

    async def test_delete_many_batches_keys(self, object_store_config):
        s3 = Mock()
        s3.delete_objects.return_value = {}
        client = ObjectStoreClient(object_store_config, s3_client=s3)
        keys = [f"u/b/tts/page-{index}.mp3" for index in range(1001)]

        failed = await client.delete_many(keys)

        assert failed == []
        assert s3.delete_objects.call_count == 2
        first, second = s3.delete_objects.call_args_list
        assert len(first.kwargs["Delete"]["Objects"]) == 1000
        assert second.kwargs["Delete"]["Objects"] == [{"Key": "u/b/tts/page-1000.mp3"}]
        assert first.kwargs["Bucket"] == "storybooks"

    async def test_failed_batch_counts_every_key(self, object_store_config):
        s3 = Mock()
        s3.delete_objects.side_effect = EndpointConnectionError(endpoint_url=object_store_config.endpoint)
        client = ObjectStoreClient(object_store_config, s3_client=s3)

        failed = await client.delete_many(["a", "b"])

        assert failed == ["a", "b"]
