"""End-to-end creation pipeline and storybook library tests against in-memory stores."""

from unittest.mock import AsyncMock

import pytest
import yaml

from conftest import PUBLIC_BASE_URL
from doodlebook.common import ChatResult
from doodlebook.common.errors import (
    ContentContractError,
    FulfillmentError,
    PersistenceError,
    ProviderError,
    QuotaConflictError,
    QuotaExceededError,
)
from doodlebook.story_generation import StorybookRequest

DRAWING_URL = "data:image/png;base64,iVBORw0KGgo="


def fox_request(**overrides):
    fields = {
        "title": "A Fox's Journey",
        "description": "a fox returns a lost star",
        "language": "en",
        "drawing_data_url": DRAWING_URL,
    }
    fields.update(overrides)
    return StorybookRequest(**fields)


@pytest.mark.asyncio
class TestCreationPipeline:

    async def test_creates_storybook_and_debits_quota(
        self, creation_pipeline, fake_store, fake_objects, image_generator, speech_synthesizer
    ):
        stages = []

        response = await creation_pipeline.create(
            "user-1", fox_request(), progress_callback=lambda stage, payload: stages.append(stage)
        )

        assert response["storybookId"] == "book-1"
        assert response["storybook"]["title"] == "A Fox's Journey"
        assert len(response["ebook"]["pages"]) == 10
        assert len(response["ebook"]["narrations"]) == 10
        assert response["ebook"]["coverImageUrl"].startswith("data:image/png;base64,")
        assert response["details"]["origin"][0]["drawingImageUrl"] == DRAWING_URL
        assert response["quota"]["freeStoryQuotaUsed"] == 1
        assert response["quota"]["remainingFreeStories"] == 1

        storybook = fake_store.rows("storybooks", id="book-1")[0]
        assert storybook["status"] == "completed"
        assert storybook["user_id"] == "user-1"
        assert storybook["metadata"]["openai_response_id"] == "resp_fox"
        assert storybook["metadata"]["parser_schema"] == "structured"
        assert len(fake_store.rows("storybook_output_details", storybook_id="book-1")) == 11
        assert fake_store.rows("usage_quotas", user_id="user-1")[0]["free_story_quota_used"] == 1

        assert len(fake_objects.objects) == 14
        assert image_generator.generate_image.await_count == 3
        assert speech_synthesizer.synthesize.await_count == 10

        assert stages[0] == "quota:checking"
        assert stages[-1] == "pipeline:complete"
        assert stages.index("persistence:saved") < stages.index("quota:debited")

    async def test_highlight_page_is_flagged_in_ebook(self, creation_pipeline):
        response = await creation_pipeline.create("user-1", fox_request())

        flagged = [page["page"] for page in response["ebook"]["pages"] if page["isHighlight"]]
        assert flagged == [6]
        assert all(row["pageType"] == "story" for row in response["details"]["output"][1:])
        assert response["details"]["output"][0]["pageType"] == "cover"

    async def test_quota_exceeded_stops_before_generation(
        self, creation_pipeline, fake_store, completion_fn
    ):
        fake_store.seed(
            "usage_quotas",
            {"user_id": "user-1", "free_story_quota_total": 2, "free_story_quota_used": 2},
        )

        with pytest.raises(QuotaExceededError):
            await creation_pipeline.create("user-1", fox_request())

        completion_fn.assert_not_awaited()

    async def test_unparseable_story_is_not_charged(
        self, creation_pipeline, fake_store, completion_fn, image_generator
    ):
        completion_fn.return_value = ChatResult(text="Once upon a time...", raw={}, response_id="r")

        with pytest.raises(ContentContractError) as excinfo:
            await creation_pipeline.create("user-1", fox_request())

        assert excinfo.value.status_code == 502
        image_generator.generate_image.assert_not_awaited()
        assert fake_store.rows("storybooks") == []
        assert fake_store.rows("usage_quotas", user_id="user-1")[0]["free_story_quota_used"] == 0

    async def test_provider_failure(self, creation_pipeline, completion_fn):
        completion_fn.side_effect = RuntimeError("timeout")

        with pytest.raises(ProviderError):
            await creation_pipeline.create("user-1", fox_request())

    async def test_missing_asset_is_not_charged(self, creation_pipeline, fake_store, fake_objects, image_generator):
        image_generator.generate_image.return_value = None

        with pytest.raises(FulfillmentError):
            await creation_pipeline.create("user-1", fox_request())

        assert fake_objects.objects == {}
        assert fake_store.rows("usage_quotas", user_id="user-1")[0]["free_story_quota_used"] == 0

    async def test_persistence_failure_is_not_charged(self, creation_pipeline, fake_store, fake_objects):
        fake_store.fail("POST", "storybook_output_details")

        with pytest.raises(PersistenceError):
            await creation_pipeline.create("user-1", fox_request())

        assert fake_store.rows("storybooks") == []
        assert fake_objects.objects == {}
        assert fake_store.rows("usage_quotas", user_id="user-1")[0]["free_story_quota_used"] == 0

    async def test_lost_debit_race_still_returns_storybook(
        self, creation_pipeline, entitlements, fake_store, monkeypatch
    ):
        monkeypatch.setattr(entitlements, "debit", AsyncMock(side_effect=QuotaConflictError("raced")))

        response = await creation_pipeline.create("user-1", fox_request())

        assert response["storybookId"] == "book-1"
        assert response["quota"]["freeStoryQuotaUsed"] == 0
        assert len(fake_store.rows("storybooks")) == 1

    async def test_debit_store_outage_still_returns_storybook(self, creation_pipeline, fake_store):
        fake_store.fail("PATCH", "usage_quotas", 503, "unavailable")

        response = await creation_pipeline.create("user-1", fox_request())

        assert response["storybookId"] == "book-1"
        assert response["quota"]["freeStoryQuotaUsed"] == 0
        assert len(fake_store.rows("storybooks", id="book-1")) == 1
        assert fake_store.rows("usage_quotas", user_id="user-1")[0]["free_story_quota_used"] == 0

    async def test_quota_reread_outage_reports_pre_creation_quota(self, creation_pipeline, fake_store):
        fake_store.seed(
            "usage_quotas",
            {"user_id": "user-1", "free_story_quota_total": 3, "free_story_quota_used": 1},
        )

        def outage(method, table):
            if method == "PATCH" and table == "usage_quotas":
                fake_store.fail("PATCH", "usage_quotas", 503, "unavailable")
                fake_store.fail("GET", "usage_quotas", 503, "unavailable")

        fake_store.before_request = outage

        response = await creation_pipeline.create("user-1", fox_request())

        assert response["storybookId"] == "book-1"
        assert response["quota"]["freeStoryQuotaTotal"] == 3
        assert response["quota"]["freeStoryQuotaUsed"] == 1
        assert len(fake_store.rows("storybooks", id="book-1")) == 1

    async def test_create_from_yaml_file(self, creation_pipeline, tmp_path):
        request_path = tmp_path / "request.yaml"
        request_path.write_text(
            yaml.safe_dump({"title": "Moon Boat", "description": "a boat sails to the moon", "language": "ko"}),
            encoding="utf-8",
        )

        response = await creation_pipeline.create_from_file("user-1", request_path)

        assert response["storybook"]["title"] == "Moon Boat"
        assert response["details"]["origin"][0]["drawingImageUrl"] is None

    async def test_invalid_mapping_raises_value_error(self, creation_pipeline):
        with pytest.raises(ValueError):
            await creation_pipeline.create_from_mapping("user-1", {"title": "x"})


@pytest.mark.asyncio
class TestStorybookLibrary:

    async def test_detail_resolves_public_urls(self, creation_pipeline, library):
        await creation_pipeline.create("user-1", fox_request())

        detail = await library.get_detail("user-1", "book-1")

        assert detail["storybookId"] == "book-1"
        assert detail["ebook"]["coverImageUrl"] == f"{PUBLIC_BASE_URL}/user-1/book-1/images/cover.png"
        assert detail["ebook"]["finalImageUrl"] == f"{PUBLIC_BASE_URL}/user-1/book-1/images/end.png"
        assert len(detail["ebook"]["pages"]) == 10
        assert detail["ebook"]["narrations"][0] == {
            "page": 1,
            "audioDataUrl": f"{PUBLIC_BASE_URL}/user-1/book-1/tts/page-01.mp3",
        }
        assert [row["pageIndex"] for row in detail["details"]["output"]] == list(range(11))
        assert detail["storybook"]["createdAt"] is not None

    async def test_detail_is_scoped_to_owner(self, creation_pipeline, library):
        await creation_pipeline.create("user-1", fox_request())

        assert await library.get_detail("user-2", "book-1") is None
        assert await library.get_detail("user-1", "missing") is None

    async def test_incomplete_storybooks_are_hidden(self, library, fake_store):
        fake_store.seed(
            "storybooks",
            {"id": "draft-1", "user_id": "user-1", "title": "Draft", "status": "generating"},
        )

        assert await library.get_detail("user-1", "draft-1") is None
        assert await library.list_summaries("user-1") == []

    async def test_list_is_newest_first(self, creation_pipeline, library):
        await creation_pipeline.create("user-1", fox_request(title="First"))
        await creation_pipeline.create("user-1", fox_request(title="Second"))

        summaries = await library.list_summaries("user-1")

        assert [summary["title"] for summary in summaries] == ["Second", "First"]
        assert summaries[0]["originImageUrl"] == f"{PUBLIC_BASE_URL}/user-1/book-2/images/origin.png"

    async def test_delete_removes_rows(self, creation_pipeline, library, fake_store):
        await creation_pipeline.create("user-1", fox_request())

        assert await library.delete("user-2", "book-1") is False
        assert await library.delete("user-1", "book-1") is True

        assert fake_store.rows("storybooks") == []
        assert fake_store.rows("storybook_origin_details") == []
        assert fake_store.rows("storybook_output_details") == []
        assert await library.delete("user-1", "book-1") is False
