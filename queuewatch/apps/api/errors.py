from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Keep framework errors (404/405) in the same success/error shape as the retry endpoint.
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        content={"success": False, "error": message},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error body.
    logger.exception("queuewatch_unhandled_error path=%s", request.url.path)
    return JSONResponse(content={"success": False, "error": "Internal server error"}, status_code=500)
