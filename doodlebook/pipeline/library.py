"""
Read and delete access to a user's completed storybooks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from doodlebook.storage.rest import RestStoreClient, eq

from .records import ORIGIN_DETAILS_TABLE, OUTPUT_DETAILS_TABLE, STORYBOOKS_TABLE
from .response import (
    build_storybook_detail_response,
    build_storybook_summary,
    public_url_resolver,
)

logger = logging.getLogger(__name__)

STORYBOOK_COLUMNS = (
    "id,title,author_name,description,origin_image_r2_key,cover_image_r2_key,"
    "highlight_image_r2_key,end_image_r2_key,created_at"
)
SUMMARY_COLUMNS = "id,title,author_name,description,origin_image_r2_key,created_at"
ORIGIN_COLUMNS = "page_index,drawing_image_r2_key,description"
OUTPUT_COLUMNS = "page_index,page_type,title,content,image_r2_key,audio_r2_key,is_highlight"


class StorybookLibrary:
    """
    Storybook lookups scoped to the owning user. Only completed storybooks are visible.
    """

    def __init__(self, store: RestStoreClient, *, public_base_url: str | None = None) -> None:
        self._store = store
        self._resolve_asset = public_url_resolver(public_base_url)

    async def _fetch_storybook(self, user_id: str, storybook_id: str) -> dict[str, Any] | None:
        return await self._store.select_one(
            STORYBOOKS_TABLE,
            columns=STORYBOOK_COLUMNS,
            filters={
                "user_id": eq(user_id),
                "id": eq(storybook_id),
                "status": eq("completed"),
            },
        )

    async def get_detail(self, user_id: str, storybook_id: str) -> dict[str, Any] | None:
        storybook = await self._fetch_storybook(user_id, storybook_id)
        if storybook is None:
            return None

        origin_rows, output_rows = await asyncio.gather(
            self._store.select(
                ORIGIN_DETAILS_TABLE,
                columns=ORIGIN_COLUMNS,
                filters={"storybook_id": eq(storybook_id)},
                order="page_index.asc",
            ),
            self._store.select(
                OUTPUT_DETAILS_TABLE,
                columns=OUTPUT_COLUMNS,
                filters={"storybook_id": eq(storybook_id)},
                order="page_index.asc",
            ),
        )
        return build_storybook_detail_response(
            storybook=storybook,
            origin_details=origin_rows,
            output_details=output_rows,
            resolve_asset=self._resolve_asset,
        )

    async def list_summaries(self, user_id: str) -> list[dict[str, Any]]:
        rows = await self._store.select(
            STORYBOOKS_TABLE,
            columns=SUMMARY_COLUMNS,
            filters={"user_id": eq(user_id), "status": eq("completed")},
            order="created_at.desc",
        )
        summaries = (build_storybook_summary(row, self._resolve_asset) for row in rows)
        return [summary for summary in summaries if summary is not None]

    async def delete(self, user_id: str, storybook_id: str) -> bool:
        """
        Delete a storybook and its detail rows. Returns ``False`` if the user owns no such storybook.
        """
        if await self._fetch_storybook(user_id, storybook_id) is None:
            return False

        await self._store.delete(OUTPUT_DETAILS_TABLE, filters={"storybook_id": eq(storybook_id)})
        await self._store.delete(ORIGIN_DETAILS_TABLE, filters={"storybook_id": eq(storybook_id)})
        await self._store.delete(
            STORYBOOKS_TABLE,
            filters={"id": eq(storybook_id), "user_id": eq(user_id)},
        )
        logger.info("Deleted storybook %s for user %s.", storybook_id, user_id)
        return True
