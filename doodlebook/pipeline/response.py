"""
Client-facing storybook payloads built from stored rows.
"""

from __future__ import annotations

from datetime import datetime
from functools import partial
from typing import Any, Callable, Mapping, Sequence

from doodlebook.storage.object_store import resolve_public_url

from .persistence import StorybookBundle

AssetResolver = Callable[[Any], "str | None"]


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    return text or None


def _page_index(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _created_at(value: Any) -> str | None:
    text = _clean(value)
    if not text:
        return None
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return text


def public_url_resolver(public_base_url: str | None) -> AssetResolver:
    return partial(resolve_public_url, public_base_url=public_base_url)


def build_storybook_summary(row: Mapping[str, Any], resolve_asset: AssetResolver) -> dict[str, Any] | None:
    storybook_id = _clean(row.get("id"))
    if not storybook_id:
        return None

    return {
        "storybookId": storybook_id,
        "title": _clean(row.get("title")) or "Untitled",
        "authorName": _clean(row.get("author_name")),
        "description": _clean(row.get("description")) or "",
        "originImageUrl": resolve_asset(row.get("origin_image_r2_key")),
        "createdAt": _created_at(row.get("created_at")),
    }


def _origin_details(rows: Sequence[Mapping[str, Any]], resolve_asset: AssetResolver) -> list[dict[str, Any]]:
    details = []
    for row in rows:
        index = _page_index(row.get("page_index"))
        if index is None:
            continue
        details.append(
            {
                "pageIndex": index,
                "drawingImageUrl": resolve_asset(row.get("drawing_image_r2_key")),
                "description": _clean(row.get("description")) or "",
            }
        )
    return sorted(details, key=lambda item: item["pageIndex"])


def _output_details(rows: Sequence[Mapping[str, Any]], resolve_asset: AssetResolver) -> list[dict[str, Any]]:
    details = []
    for row in rows:
        index = _page_index(row.get("page_index"))
        if index is None:
            continue
        details.append(
            {
                "pageIndex": index,
                "pageType": "cover" if row.get("page_type") == "cover" else "story",
                "title": _clean(row.get("title")),
                "content": _clean(row.get("content")),
                "imageUrl": resolve_asset(row.get("image_r2_key")),
                "audioUrl": resolve_asset(row.get("audio_r2_key")),
                "isHighlight": row.get("is_highlight") is True,
            }
        )
    return sorted(details, key=lambda item: item["pageIndex"])


def _ebook(
    storybook: Mapping[str, Any],
    output: Sequence[Mapping[str, Any]],
    resolve_asset: AssetResolver,
) -> dict[str, Any]:
    story_rows = [row for row in output if row["pageType"] == "story"]
    return {
        "title": _clean(storybook.get("title")) or "Untitled",
        "authorName": _clean(storybook.get("author_name")),
        "coverImageUrl": resolve_asset(storybook.get("cover_image_r2_key")),
        "highlightImageUrl": resolve_asset(storybook.get("highlight_image_r2_key")),
        "finalImageUrl": resolve_asset(storybook.get("end_image_r2_key")),
        "pages": [
            {"page": row["pageIndex"], "content": row["content"], "isHighlight": row["isHighlight"]}
            for row in story_rows
            if row["content"]
        ],
        "narrations": [
            {"page": row["pageIndex"], "audioDataUrl": row["audioUrl"]}
            for row in story_rows
            if row["audioUrl"]
        ],
    }


def build_storybook_detail_response(
    *,
    storybook: Mapping[str, Any],
    origin_details: Sequence[Mapping[str, Any]],
    output_details: Sequence[Mapping[str, Any]],
    resolve_asset: AssetResolver | None = None,
    public_base_url: str | None = None,
) -> dict[str, Any] | None:
    """
    Assemble ``{storybookId, storybook, details, ebook}`` from stored rows.

    Asset keys are resolved through ``resolve_asset`` when given, otherwise
    against ``public_base_url``. The cover row never appears in ``ebook.pages``.
    Returns ``None`` for a storybook row without an id.
    """
    resolver = resolve_asset or public_url_resolver(public_base_url)
    summary = build_storybook_summary(storybook, resolver)
    if summary is None:
        return None

    output = _output_details(output_details, resolver)
    return {
        "storybookId": summary["storybookId"],
        "storybook": summary,
        "details": {
            "origin": _origin_details(origin_details, resolver),
            "output": output,
        },
        "ebook": _ebook(storybook, output, resolver),
    }


def build_creation_response(bundle: StorybookBundle, *, quota: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """
    Detail response for a storybook that was just created, with every asset
    inlined as a data URL instead of resolved to the object store.
    """
    inline = {upload.key: upload.payload.data_url for upload in bundle.uploads}

    def resolve_inline(key: Any) -> str | None:
        if not isinstance(key, str):
            return None
        return inline.get(key) or resolve_public_url(key, None)

    response = build_storybook_detail_response(
        storybook=bundle.storybook.to_row(),
        origin_details=[record.to_row() for record in bundle.origin_details],
        output_details=[record.to_row() for record in bundle.output_details],
        resolve_asset=resolve_inline,
    )
    if response is None:
        raise ValueError("Storybook bundle is missing its storybook id.")
    if quota is not None:
        response["quota"] = dict(quota)
    return response
