"""
Thin async client for the relational store's PostgREST interface.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

import httpx

from doodlebook.common.config import RestStoreConfig
from doodlebook.common.errors import StoreError

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def eq(value: Any) -> str:
    """Equality filter expression."""
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def is_null() -> str:
    return "is.null"


def in_(values: Iterable[Any]) -> str:
    return "in.(" + ",".join(str(value) for value in values) + ")"


def _read_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def resolve_error_message(payload: Any, fallback: str) -> str:
    """
    Join the distinct ``message``/``error``/``details``/``hint`` strings of an error body.
    """
    if not isinstance(payload, Mapping):
        return fallback

    parts: list[str] = []
    for key in ("message", "error", "details", "hint"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip() and value.strip() not in parts:
            parts.append(value.strip())

    return " | ".join(parts) if parts else fallback


class RestStoreClient:
    """
    Table-level select/insert/update/delete against ``{base_url}/rest/v1``.

    Every failure, transport or HTTP, is raised as :class:`StoreError` with the
    upstream status (502 for transport errors).
    """

    def __init__(self, config: RestStoreConfig, *, http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._http = http_client

    @property
    def schema(self) -> str:
        return self._config.schema

    def _url(self, table: str) -> str:
        return f"{self._config.base_url}/rest/v1/{table}"

    def _headers(self, *, json_body: bool = False, prefer: Sequence[str] = ()) -> dict[str, str]:
        headers = {
            "apikey": self._config.service_key,
            "Authorization": f"Bearer {self._config.service_key}",
            "Content-Profile": self._config.schema,
            "Accept-Profile": self._config.schema,
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        if prefer:
            headers["Prefer"] = ",".join(prefer)
        return headers

    async def _send(
        self,
        method: str,
        table: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
        headers: Mapping[str, str],
        failure_message: str,
    ) -> Any:
        try:
            response = await self._http.request(
                method,
                self._url(table),
                params=dict(params or {}),
                json=json,
                headers=dict(headers),
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed to reach the store: %s", method, table, exc)
            raise StoreError(502, f"Failed to reach the store REST API for {table}.") from exc

        payload = _read_body(response)
        if response.is_error:
            raise StoreError(response.status_code, resolve_error_message(payload, failure_message))
        return payload

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, str] | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
    ) -> list[Row]:
        params: dict[str, str] = {"select": columns, **(filters or {})}
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)

        payload = await self._send(
            "GET",
            table,
            params=params,
            headers=self._headers(),
            failure_message=f"Failed to fetch {table} rows.",
        )
        return [row for row in payload if isinstance(row, dict)] if isinstance(payload, list) else []

    async def select_one(self, table: str, **kwargs: Any) -> Row | None:
        rows = await self.select(table, limit=1, **kwargs)
        return rows[0] if rows else None

    async def insert(
        self,
        table: str,
        rows: Row | Sequence[Row],
        *,
        on_conflict: str | None = None,
        merge_duplicates: bool = False,
        ignore_duplicates: bool = False,
        returning: bool = False,
    ) -> list[Row]:
        prefer: list[str] = []
        if merge_duplicates:
            prefer.append("resolution=merge-duplicates")
        if ignore_duplicates:
            prefer.append("resolution=ignore-duplicates")
        prefer.append("return=representation" if returning else "return=minimal")

        params = {"on_conflict": on_conflict} if on_conflict else None
        payload = await self._send(
            "POST",
            table,
            params=params,
            json=rows if isinstance(rows, Mapping) else list(rows),
            headers=self._headers(json_body=True, prefer=prefer),
            failure_message=f"Failed to insert into {table}.",
        )
        return list(payload) if returning and isinstance(payload, list) else []

    async def update(
        self,
        table: str,
        values: Row,
        *,
        filters: Mapping[str, str],
        returning: bool = False,
    ) -> list[Row]:
        if not filters:
            raise ValueError("Refusing to update without filters.")

        payload = await self._send(
            "PATCH",
            table,
            params=filters,
            json=values,
            headers=self._headers(
                json_body=True,
                prefer=("return=representation" if returning else "return=minimal",),
            ),
            failure_message=f"Failed to update {table}.",
        )
        return list(payload) if returning and isinstance(payload, list) else []

    async def delete(self, table: str, *, filters: Mapping[str, str]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters.")

        await self._send(
            "DELETE",
            table,
            params=filters,
            headers=self._headers(prefer=("return=minimal",)),
            failure_message=f"Failed to delete from {table}.",
        )
