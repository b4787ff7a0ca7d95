from __future__ import annotations

import asyncio
import base64
import binascii
from datetime import timedelta
import functools
import logging
import time
from typing import Any, Awaitable, Callable, Iterable

from arq import Retry
from arq.connections import ArqRedis, RedisSettings, create_pool
from arq.constants import default_queue_name
from arq.jobs import DeserializationError, JobDef, SerializationError, deserialize_job, serialize_job

from queuewatch.core.config import DEFAULT_CONNECTION, Settings, get_settings
from queuewatch.core.errors import (
    CommandSerializationError,
    JobReconstructionError,
    UnknownConnectionError,
    UnknownJobClassError,
)
from queuewatch.domain.events import ExceptionDetails, FailureEvent


logger = logging.getLogger(__name__)

_registered_functions: set[str] = set()


def serialize_command(function: str, args: Iterable[Any] = (), kwargs: dict[str, Any] | None = None) -> str:
    # Produce the opaque command blob a retry request carries back to us.
    try:
        raw = serialize_job(
            function,
            tuple(args),
            dict(kwargs or {}),
            None,
            int(time.time() * 1000),
        )
    except SerializationError as exc:
        raise CommandSerializationError(f"Unable to serialize job command for {function}") from exc
    return base64.b64encode(raw).decode("ascii")


def deserialize_command(blob: str) -> JobDef:
    # Error messages stay fixed so callers can surface them without echoing the blob.
    try:
        raw = base64.b64decode(blob.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError, AttributeError) as exc:
        raise CommandSerializationError("Job command data is not valid base64") from exc
    try:
        return deserialize_job(raw)
    except DeserializationError as exc:
        raise CommandSerializationError("Job command data could not be deserialized") from exc


def build_failure_event(
    ctx: dict[str, Any],
    *,
    name: str,
    qualified_name: str,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    exc: BaseException,
    queue: str | None,
    connection: str | None,
    max_tries: int | None,
    timeout: float | None,
) -> FailureEvent:
    """Copy everything the report pipeline needs out of a failing arq job."""
    job_id = ctx.get("job_id")
    data: dict[str, Any] = {"commandName": name}
    try:
        data["command"] = serialize_command(name, args, kwargs)
    except CommandSerializationError:
        # Unpicklable arguments: the job is still reported, just not retryable.
        logger.debug("queuewatch_command_unserializable job=%s", name)
    return FailureEvent(
        job_id=job_id,
        job_uuid=job_id,
        job_name=name,
        # arq's job ctx has no queue name; the worker's pool knows which queue it consumes.
        queue=queue or getattr(ctx.get("redis"), "default_queue_name", None) or default_queue_name,
        connection=connection or DEFAULT_CONNECTION,
        attempts=int(ctx.get("job_try") or 1),
        max_tries=max_tries,
        timeout=timeout,
        exception=ExceptionDetails.from_exception(exc),
        payload={
            "uuid": job_id,
            "displayName": name,
            "job": qualified_name,
            "maxTries": max_tries,
            "timeout": timeout,
            "data": data,
        },
    )


def report_failures(
    coroutine: Callable[..., Awaitable[Any]] | None = None,
    *,
    name: str | None = None,
    reporter: Any = None,
    queue: str | None = None,
    connection: str | None = None,
    max_tries: int | None = None,
    timeout: float | None = None,
):
    """Wrap an arq job so unhandled failures are reported before arq records them.

    ``Retry`` passes straight through; any other exception is copied into a
    ``FailureEvent``, handed to the reporter, then re-raised unchanged.
    """

    def decorate(fn: Callable[..., Awaitable[Any]]):
        job_name = name or fn.__qualname__
        qualified_name = f"{fn.__module__}:{fn.__qualname__}"
        _registered_functions.add(job_name)

        @functools.wraps(fn)
        async def wrapper(ctx, *args, **kwargs):
            try:
                return await fn(ctx, *args, **kwargs)
            except Retry:
                raise
            except Exception as exc:
                await _report(
                    reporter,
                    build_failure_event(
                        ctx,
                        name=job_name,
                        qualified_name=qualified_name,
                        args=args,
                        kwargs=kwargs,
                        exc=exc,
                        queue=queue,
                        connection=connection,
                        max_tries=max_tries,
                        timeout=timeout,
                    ),
                )
                raise

        return wrapper

    if coroutine is not None:
        return decorate(coroutine)
    return decorate


async def _report(reporter: Any, event: FailureEvent) -> None:
    if reporter is None:
        # Imported lazily: the reporter depends on this module for its queue engine.
        from queuewatch.services.reporter import get_failure_reporter

        reporter = get_failure_reporter()
    try:
        await reporter.handle(event)
    except Exception:  # noqa: BLE001 - reporting must never alter the failing job's outcome
        logger.exception("queuewatch_report_failed job=%s", event.job_name)


class ArqQueueEngine:
    """Named-connection front for arq pools used by the reporter and the retry endpoint."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        pools: dict[str, Any] | None = None,
        known_functions: Iterable[str] = (),
    ) -> None:
        self._settings = settings or get_settings()
        # Pre-built pools (tests, embedding apps) bypass lazy connection setup.
        self._static_pools: dict[str, Any] = dict(pools or {})
        self._pools: dict[str, tuple[asyncio.AbstractEventLoop, ArqRedis]] = {}
        # asyncio locks bind to the loop that first contends them, so keep one per loop.
        self._locks: dict[asyncio.AbstractEventLoop, asyncio.Lock] = {}
        self._known_functions = set(known_functions)

    def function_exists(self, name: str) -> bool:
        return name in self._known_functions or name in _registered_functions

    async def get_pool(self, connection: str | None = None) -> Any:
        resolved = connection or DEFAULT_CONNECTION
        if resolved in self._static_pools:
            return self._static_pools[resolved]
        current_loop = asyncio.get_running_loop()
        cached = self._pools.get(resolved)
        if cached is not None and cached[0] is current_loop:
            return cached[1]
        async with self._loop_lock(current_loop):
            cached = self._pools.get(resolved)
            if cached is not None and cached[0] is current_loop:
                return cached[1]
            dsn = self._settings.connection_dsn(resolved)
            if dsn is None:
                raise UnknownConnectionError(f"Queue connection {resolved} is not configured.")
            # Drop loop-bound pools to avoid cross-loop errors in tests.
            pool = await create_pool(RedisSettings.from_dsn(dsn))
            self._pools[resolved] = (current_loop, pool)
        return pool

    def _loop_lock(self, loop: asyncio.AbstractEventLoop) -> asyncio.Lock:
        lock = self._locks.get(loop)
        if lock is None:
            # Forget locks of closed loops so the map does not grow across test runs.
            self._locks = {key: value for key, value in self._locks.items() if not key.is_closed()}
            lock = asyncio.Lock()
            self._locks[loop] = lock
        return lock

    async def enqueue(
        self,
        function: str,
        *args: Any,
        connection: str | None = None,
        queue: str | None = None,
        defer_by: timedelta | None = None,
        **kwargs: Any,
    ) -> str | None:
        redis = await self.get_pool(connection)
        job = await redis.enqueue_job(
            function,
            *args,
            _queue_name=queue,
            _defer_by=defer_by,
            **kwargs,
        )
        # arq returns None when a job with the same id already exists.
        return job.job_id if job else None

    async def dispatch_command(
        self,
        blob: str | None,
        *,
        job_class: str,
        connection: str | None,
        queue: str,
        delay: int = 0,
    ) -> str | None:
        """Re-submit the exact job captured in a command blob.

        The job is never rebuilt from its class name: without the blob there is
        no safe way to restore the arguments it was called with.
        """
        if not blob:
            if self.function_exists(job_class):
                raise JobReconstructionError(
                    "Unable to reconstruct job from payload. The job command data is missing."
                )
            raise UnknownJobClassError(f"Job class {job_class} does not exist.")
        try:
            job_def = deserialize_command(blob)
        except CommandSerializationError as exc:
            raise JobReconstructionError(str(exc)) from exc
        defer_by = timedelta(seconds=delay) if delay > 0 else None
        return await self.enqueue(
            job_def.function,
            *job_def.args,
            connection=connection,
            queue=queue,
            defer_by=defer_by,
            **job_def.kwargs,
        )
