from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from queuewatch.services.retry import (
    SIGNATURE_HEADER,
    RetryDispatcher,
    RetrySettings,
    handle_retry,
)


class RetryAccepted(BaseModel):
    success: bool = True
    message: str


class RetryRejected(BaseModel):
    success: bool = False
    error: str
    errors: list[dict[str, Any]] | None = None


def build_retry_router(
    *,
    path: str,
    settings: RetrySettings,
    dispatcher: RetryDispatcher,
) -> APIRouter:
    # Bind settings and the queue engine at build time; the handler holds no other state.
    router = APIRouter(tags=["retry"])
    route_path = "/" + path.strip("/")

    @router.post(
        route_path,
        name="queuewatch.retry",
        response_model=RetryAccepted,
        responses={
            401: {"model": RetryRejected},
            403: {"model": RetryRejected},
            422: {"model": RetryRejected},
            500: {"model": RetryRejected},
        },
    )
    async def retry(request: Request) -> JSONResponse:
        # Read the raw body once so the HMAC covers exactly the bytes that were sent.
        raw_body = await request.body()
        outcome = await handle_retry(
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            settings=settings,
            dispatcher=dispatcher,
        )
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    return router
