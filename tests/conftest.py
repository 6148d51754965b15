"""Shared fixtures: in-memory REST store, object store and provider doubles."""

from __future__ import annotations

import base64
import itertools
import json
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable
from unittest.mock import AsyncMock, Mock
from zoneinfo import ZoneInfo

import httpx
import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

from doodlebook.billing import EntitlementEngine
from doodlebook.common import ChatResult
from doodlebook.common.config import ObjectStoreConfig, RestStoreConfig
from doodlebook.pipeline import (
    AssetGenerationOrchestrator,
    PersistenceSaga,
    StorybookCreationPipeline,
    StorybookLibrary,
)
from doodlebook.storage import ObjectStoreClient, RestStoreClient
from doodlebook.story_generation import StoryTextGenerator

REST_BASE_URL = "https://store.test"
OBJECT_STORE_URL = "https://account.r2.cloudflarestorage.com"
PUBLIC_BASE_URL = "https://cdn.test"

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image"
MP3_BYTES = b"ID3\x03fake-audio"

# 2026-03-01 12:00 in Asia/Seoul.
FIXED_NOW = datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)

UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "storybooks": ("id",),
    "storybook_origin_details": ("storybook_id", "page_index"),
    "storybook_output_details": ("storybook_id", "page_index"),
    "usage_quotas": ("user_id",),
    "subscriptions": ("user_id",),
    "polar_webhook_events": ("event_id",),
}

RESERVED_PARAMS = {"select", "order", "limit", "on_conflict"}


def _format(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _matches(row: dict[str, Any], filters: list[tuple[str, str]]) -> bool:
    for column, expression in filters:
        operator, _, operand = expression.partition(".")
        value = row.get(column)
        if operator == "eq" and _format(value) != operand:
            return False
        if operator == "is" and operand == "null" and value is not None:
            return False
        if operator == "in":
            options = operand.strip("()").split(",")
            if _format(value) not in options:
                return False
    return True


class FakeRestStore:
    """
    Minimal PostgREST emulator: eq/is/in filters, select/order/limit,
    on_conflict upserts, unique-key violations and Prefer return modes.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.requests: list[tuple[str, str]] = []
        self.headers: list[httpx.Headers] = []
        self.failures: dict[tuple[str, str], tuple[int, str]] = {}
        self.before_request: Callable[[str, str], None] | None = None
        self._clock = itertools.count(1)

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.tables[table].append(dict(row))

    def fail(self, method: str, table: str, status: int = 500, message: str = "store exploded") -> None:
        self.failures[(method, table)] = (status, message)

    def rows(self, table: str, **equals: Any) -> list[dict[str, Any]]:
        return [
            row
            for row in self.tables[table]
            if all(row.get(key) == value for key, value in equals.items())
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        table = request.url.path.rsplit("/", 1)[-1]
        method = request.method
        self.requests.append((method, table))
        self.headers.append(request.headers)

        if self.before_request is not None:
            self.before_request(method, table)

        failure = self.failures.get((method, table))
        if failure is not None:
            status, message = failure
            return httpx.Response(status, json={"message": message})

        params = list(request.url.params.multi_items())
        filters = [(key, value) for key, value in params if key not in RESERVED_PARAMS]
        options = dict(params)
        prefer = request.headers.get("prefer", "")

        if method == "GET":
            return self._select(table, filters, options)
        if method == "POST":
            return self._insert(table, json.loads(request.content), options, prefer)
        if method == "PATCH":
            return self._update(table, filters, json.loads(request.content), prefer)
        if method == "DELETE":
            self.tables[table] = [row for row in self.tables[table] if not _matches(row, filters)]
            return httpx.Response(204)
        return httpx.Response(405)

    def _select(self, table: str, filters: list[tuple[str, str]], options: dict[str, str]) -> httpx.Response:
        rows = [row for row in self.tables[table] if _matches(row, filters)]

        order = options.get("order")
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda row: (row.get(column) is None, row.get(column)), reverse=direction == "desc")

        if "limit" in options:
            rows = rows[: int(options["limit"])]

        columns = options.get("select", "*")
        if columns != "*":
            names = columns.split(",")
            rows = [{name: row.get(name) for name in names} for row in rows]
        return httpx.Response(200, json=[dict(row) for row in rows])

    def _insert(self, table: str, body: Any, options: dict[str, str], prefer: str) -> httpx.Response:
        incoming = body if isinstance(body, list) else [body]
        keys = UNIQUE_KEYS.get(table, ())
        conflict_keys = tuple(options["on_conflict"].split(",")) if "on_conflict" in options else keys

        inserted: list[dict[str, Any]] = []
        for item in incoming:
            row = dict(item)
            if table == "storybooks" and "created_at" not in row:
                row["created_at"] = f"2026-03-01T00:00:{next(self._clock):02d}+00:00"

            existing = next(
                (
                    current
                    for current in self.tables[table]
                    if conflict_keys and all(current.get(key) == row.get(key) for key in conflict_keys)
                ),
                None,
            )
            if existing is not None:
                if "resolution=merge-duplicates" in prefer:
                    existing.update(row)
                    inserted.append(existing)
                    continue
                if "resolution=ignore-duplicates" in prefer:
                    continue
                return httpx.Response(
                    409,
                    json={"code": "23505", "message": "duplicate key value violates unique constraint"},
                )
            self.tables[table].append(row)
            inserted.append(row)

        if "return=representation" in prefer:
            return httpx.Response(201, json=[dict(row) for row in inserted])
        return httpx.Response(201)

    def _update(self, table: str, filters: list[tuple[str, str]], values: dict[str, Any], prefer: str) -> httpx.Response:
        updated = []
        for row in self.tables[table]:
            if _matches(row, filters):
                row.update(values)
                updated.append(dict(row))

        if "return=representation" in prefer:
            return httpx.Response(200, json=updated)
        return httpx.Response(204)


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the object store makes."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[str, bytes]] = {}
        self.put_calls: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.fail_keys: set[str] = set()

    def put_object(self, **params: Any) -> dict[str, Any]:
        key = params["Key"]
        if any(marker in key for marker in self.fail_keys):
            raise ClientError(
                {"Error": {"Code": "InternalError", "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": 500}},
                "PutObject",
            )
        self.put_calls.append(params)
        self.objects[key] = (params["ContentType"], params["Body"])
        return {"ETag": '"etag"'}

    def delete_objects(self, *, Bucket: str, Delete: dict[str, Any]) -> dict[str, Any]:
        for item in Delete["Objects"]:
            self.deleted.append(item["Key"])
            self.objects.pop(item["Key"], None)
        return {}


class FakeMediaHost:
    def __init__(self) -> None:
        self.files: dict[str, tuple[str, bytes]] = {}

    def handle(self, request: httpx.Request) -> httpx.Response:
        found = self.files.get(str(request.url))
        if found is None:
            return httpx.Response(404)
        content_type, data = found
        return httpx.Response(200, content=data, headers={"content-type": content_type})


@pytest.fixture()
def fake_store() -> FakeRestStore:
    return FakeRestStore()


@pytest.fixture()
def fake_objects() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture()
def media_host() -> FakeMediaHost:
    return FakeMediaHost()


@pytest_asyncio.fixture()
async def http_client(fake_store, media_host):
    def route(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "store.test":
            return fake_store.handle(request)
        return media_host.handle(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(route)) as client:
        yield client


@pytest.fixture()
def rest_client(http_client) -> RestStoreClient:
    return RestStoreClient(
        RestStoreConfig(base_url=REST_BASE_URL, service_key="service-key"),
        http_client=http_client,
    )


@pytest.fixture()
def object_store_config() -> ObjectStoreConfig:
    return ObjectStoreConfig(
        endpoint=OBJECT_STORE_URL,
        bucket="storybooks",
        access_key_id="test-access-key",
        secret_access_key="test-secret-key",
        public_base_url=PUBLIC_BASE_URL,
    )


@pytest.fixture()
def object_store(object_store_config, fake_objects) -> ObjectStoreClient:
    return ObjectStoreClient(object_store_config, s3_client=fake_objects)


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture()
def entitlements(rest_client, clock) -> EntitlementEngine:
    return EntitlementEngine(rest_client, reference_timezone=ZoneInfo("Asia/Seoul"), clock=clock)


def build_structured_story(
    *,
    highlight_page: int = 6,
    narration: bool = True,
    characters: list[Any] | None = None,
) -> dict[str, Any]:
    pages = []
    for number in range(1, 11):
        page: dict[str, Any] = {
            "page": number,
            "title": f"Chapter {number}",
            "content": f"The fox walks on, step {number}.",
        }
        if narration:
            page["narration"] = f"Narration for page {number}."
        pages.append(page)

    return {
        "highlightPage": highlight_page,
        "pages": pages,
        "imagePrompts": {
            "cover": "A small red fox holding a glowing star on a hill.",
            "highlight": "The fox lifts the star back into the night sky.",
            "end": "The fox sleeps under a sky full of stars.",
            "styleGuide": "Crayon texture, warm night palette.",
            "world": "A quiet meadow under a huge moon.",
        },
        "characters": characters
        if characters is not None
        else [{"name": "Fox", "description": "small red fox with a white-tipped tail"}],
    }


@pytest.fixture()
def structured_story() -> Callable[..., dict[str, Any]]:
    return build_structured_story


@pytest.fixture()
def image_generator() -> Mock:
    encoded = base64.b64encode(PNG_BYTES).decode("ascii")
    generator = Mock()
    generator.generate_image = AsyncMock(return_value={"b64_json": encoded})
    return generator


@pytest.fixture()
def speech_synthesizer() -> Mock:
    synthesizer = Mock()
    synthesizer.content_type = "audio/mpeg"
    synthesizer.synthesize = AsyncMock(return_value=MP3_BYTES)
    return synthesizer


@pytest.fixture()
def completion_fn() -> AsyncMock:
    return AsyncMock(
        return_value=ChatResult(
            text=json.dumps(build_structured_story()),
            raw={},
            response_id="resp_fox",
        )
    )


@pytest.fixture()
def creation_pipeline(
    entitlements, rest_client, object_store, http_client, image_generator, speech_synthesizer, completion_fn
) -> StorybookCreationPipeline:
    ids = itertools.count(1)
    return StorybookCreationPipeline(
        entitlements=entitlements,
        story_generator=StoryTextGenerator(
            api_key="test-key",
            model="test-model",
            prompt_version="3",
            completion_fn=completion_fn,
        ),
        asset_orchestrator=AssetGenerationOrchestrator(
            image_generator=image_generator,
            speech_synthesizer=speech_synthesizer,
            http_client=http_client,
        ),
        persistence=PersistenceSaga(store=rest_client, object_store=object_store),
        id_factory=lambda: f"book-{next(ids)}",
    )


@pytest.fixture()
def library(rest_client) -> StorybookLibrary:
    return StorybookLibrary(rest_client, public_base_url=PUBLIC_BASE_URL)
