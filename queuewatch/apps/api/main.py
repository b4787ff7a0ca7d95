from __future__ import annotations

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException

from queuewatch.apps.api.errors import http_exception_handler, unhandled_exception_handler
from queuewatch.apps.api.routes.retry import build_retry_router
from queuewatch.core.config import Settings, get_settings
from queuewatch.core.logging import configure_logging
from queuewatch.integrations.arq_queue import ArqQueueEngine
from queuewatch.services.retry import RetryDispatcher, RetrySettings


def create_app(
    settings: Settings | None = None,
    dispatcher: RetryDispatcher | None = None,
) -> FastAPI:
    resolved = settings or get_settings()
    configure_logging(resolved.log_level)
    app = FastAPI(title="Queuewatch Agent")

    @app.exception_handler(StarletteHTTPException)
    async def _http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict:
        return {"status": "ok", "retry_enabled": resolved.retry_enabled}

    # The retry route exists only when explicitly enabled; it re-executes queued code.
    if resolved.retry_enabled:
        app.include_router(
            build_retry_router(
                path=resolved.retry_path,
                settings=RetrySettings.from_settings(resolved),
                dispatcher=dispatcher or ArqQueueEngine(resolved),
            )
        )

    return app


app = create_app()
