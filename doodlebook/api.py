"""
HTTP surface for storybook creation, retrieval, subscription access and billing webhooks.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from doodlebook.common.errors import StorybookError
from doodlebook.services import StorybookServices
from doodlebook.story_generation import StorybookRequest

logger = logging.getLogger(__name__)

TokenVerifier = Callable[[str], Awaitable["str | None"]]


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_app(services: StorybookServices, *, verify_token: TokenVerifier) -> FastAPI:
    """
    Build the FastAPI application.

    ``verify_token`` maps a bearer token to the user id it authenticates, or
    ``None`` when the token is rejected.
    """
    app = FastAPI(title="Doodle Storybook API")

    async def current_user(request: Request) -> str:
        token = _bearer_token(request)
        if token is None:
            raise HTTPException(status_code=401, detail="Missing bearer token.")
        user_id = await verify_token(token)
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid bearer token.")
        return user_id

    @app.exception_handler(StorybookError)
    async def storybook_error_handler(request: Request, exc: StorybookError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.post("/storybooks")
    async def create_storybook(request: Request, user_id: str = Depends(current_user)) -> Any:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body."})

        try:
            storybook_request = StorybookRequest.from_mapping(body)
        except ValueError as exc:
            return JSONResponse(status_code=400, content={"error": str(exc)})

        return await services.pipeline.create(user_id, storybook_request)

    @app.get("/storybooks")
    async def list_storybooks(user_id: str = Depends(current_user)) -> Any:
        return {"storybooks": await services.library.list_summaries(user_id)}

    @app.get("/storybooks/{storybook_id}")
    async def get_storybook(storybook_id: str, user_id: str = Depends(current_user)) -> Any:
        detail = await services.library.get_detail(user_id, storybook_id.strip())
        if detail is None:
            return JSONResponse(status_code=404, content={"error": "Storybook not found."})
        return detail

    @app.delete("/storybooks/{storybook_id}")
    async def delete_storybook(storybook_id: str, user_id: str = Depends(current_user)) -> Any:
        deleted = await services.library.delete(user_id, storybook_id.strip())
        if not deleted:
            return JSONResponse(status_code=404, content={"error": "Storybook not found."})
        return Response(status_code=204)

    @app.get("/subscriptions/me")
    async def subscription_access(user_id: str = Depends(current_user)) -> Any:
        snapshot = await services.entitlements.snapshot(user_id)
        return snapshot.to_payload()

    @app.post("/webhooks/polar")
    async def polar_webhook(request: Request) -> Any:
        raw_body = await request.body()
        result = await services.reconciler.handle(dict(request.headers), raw_body)
        return JSONResponse(status_code=result.status_code, content=result.body)

    return app
