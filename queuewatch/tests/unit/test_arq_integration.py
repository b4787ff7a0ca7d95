from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from arq import Retry

from queuewatch.core.config import Settings
from queuewatch.core.errors import (
    CommandSerializationError,
    JobReconstructionError,
    UnknownConnectionError,
    UnknownJobClassError,
)
from queuewatch.integrations.arq_queue import (
    ArqQueueEngine,
    deserialize_command,
    report_failures,
    serialize_command,
)
from queuewatch.tests.utils.events import RecordingPool


class _CollectingReporter:
    def __init__(self, *, fail: bool = False) -> None:
        self.events = []
        self._fail = fail

    async def handle(self, event):  # noqa: ANN001
        self.events.append(event)
        if self._fail:
            raise RuntimeError("reporter offline")


def test_command_blob_round_trips_function_and_arguments() -> None:
    blob = serialize_command("charge_card", ("cus_1",), {"amount": 1200})
    job_def = deserialize_command(blob)

    assert isinstance(blob, str)
    assert job_def.function == "charge_card"
    assert tuple(job_def.args) == ("cus_1",)
    assert job_def.kwargs == {"amount": 1200}


def test_garbage_blob_raises_fixed_message() -> None:
    with pytest.raises(CommandSerializationError) as excinfo:
        deserialize_command("%%%not-base64%%%")
    assert "%%%" not in str(excinfo.value)

    with pytest.raises(CommandSerializationError):
        deserialize_command("bm90LWEtcGlja2xl")


def test_unpicklable_arguments_raise_serialization_error() -> None:
    with pytest.raises(CommandSerializationError):
        serialize_command("stream_upload", (lambda: None,), {})


@pytest.mark.asyncio
async def test_report_failures_builds_event_and_reraises() -> None:
    reporter = _CollectingReporter()

    @report_failures(name="charge_card", reporter=reporter, queue="payments", max_tries=5, timeout=120)
    async def charge_card(ctx, customer_id: str, *, amount: int) -> None:
        raise ValueError(f"declined for {customer_id}")

    with pytest.raises(ValueError):
        await charge_card({"job_id": "abc123", "job_try": 2}, "cus_1", amount=900)

    event = reporter.events[0]
    assert event.job_id == "abc123"
    assert event.job_name == "charge_card"
    assert event.queue == "payments"
    assert event.connection == "default"
    assert event.attempts == 2
    assert event.max_tries == 5
    assert event.exception.type_name == "ValueError"
    assert event.exception.frames[0].function == "charge_card"
    assert event.resolved_job_class() == "charge_card"
    job_def = deserialize_command(event.payload["data"]["command"])
    assert job_def.function == "charge_card"
    assert tuple(job_def.args) == ("cus_1",)
    assert job_def.kwargs == {"amount": 900}


@pytest.mark.asyncio
async def test_report_failures_passes_retry_through() -> None:
    reporter = _CollectingReporter()

    @report_failures(reporter=reporter)
    async def flaky(ctx) -> None:
        raise Retry(defer=5)

    with pytest.raises(Retry):
        await flaky({"job_id": "r1", "job_try": 1})
    assert reporter.events == []


@pytest.mark.asyncio
async def test_reporter_errors_do_not_replace_job_error() -> None:
    @report_failures(reporter=_CollectingReporter(fail=True))
    async def sync_inventory(ctx) -> None:
        raise KeyError("sku")

    with pytest.raises(KeyError):
        await sync_inventory({"job_id": "k1"})


@pytest.mark.asyncio
async def test_report_failures_keeps_function_identity() -> None:
    @report_failures(name="rebuild_index", reporter=_CollectingReporter())
    async def rebuild_index(ctx) -> str:
        return "done"

    assert rebuild_index.__name__ == "rebuild_index"
    assert await rebuild_index({}) == "done"
    assert ArqQueueEngine(Settings()).function_exists("rebuild_index") is True


@pytest.mark.asyncio
async def test_dispatch_command_enqueues_exact_job() -> None:
    pool = RecordingPool()
    engine = ArqQueueEngine(Settings(), pools={"default": pool})
    blob = serialize_command("charge_card", ("cus_1",), {"amount": 900})

    job_id = await engine.dispatch_command(
        blob,
        job_class="charge_card",
        connection="default",
        queue="payments",
        delay=30,
    )

    assert job_id == "job-1"
    job = pool.jobs[0]
    assert job["function"] == "charge_card"
    assert job["args"] == ("cus_1",)
    assert job["kwargs"]["amount"] == 900
    assert job["kwargs"]["_queue_name"] == "payments"
    assert job["kwargs"]["_defer_by"] == timedelta(seconds=30)


@pytest.mark.asyncio
async def test_dispatch_without_command_for_known_job() -> None:
    pool = RecordingPool()
    engine = ArqQueueEngine(Settings(), pools={"default": pool}, known_functions={"send_invoice"})

    with pytest.raises(JobReconstructionError, match="command data is missing"):
        await engine.dispatch_command(None, job_class="send_invoice", connection="default", queue="default")
    assert pool.jobs == []


@pytest.mark.asyncio
async def test_dispatch_without_command_for_unknown_job() -> None:
    engine = ArqQueueEngine(Settings(), pools={"default": RecordingPool()})

    with pytest.raises(UnknownJobClassError, match="does not exist"):
        await engine.dispatch_command(None, job_class="ghost_job", connection="default", queue="default")


@pytest.mark.asyncio
async def test_unknown_connection_is_rejected() -> None:
    engine = ArqQueueEngine(Settings())
    with pytest.raises(UnknownConnectionError):
        await engine.get_pool("analytics")


def test_named_connections_resolve_to_dsns() -> None:
    settings = Settings(redis_url="redis://main:6379/0", redis_connections={"analytics": "redis://analytics:6379/1"})
    assert settings.connection_dsn(None) == "redis://main:6379/0"
    assert settings.connection_dsn("default") == "redis://main:6379/0"
    assert settings.connection_dsn("analytics") == "redis://analytics:6379/1"
    assert settings.connection_dsn("missing") is None


class _WorkerPool:
    def __init__(self, default_queue_name: str) -> None:
        self.default_queue_name = default_queue_name


@pytest.mark.asyncio
async def test_queue_defaults_to_worker_pool_queue() -> None:
    reporter = _CollectingReporter()

    @report_failures(name="refund_order", reporter=reporter)
    async def refund_order(ctx) -> None:
        raise RuntimeError("gateway timeout")

    ctx = {"redis": _WorkerPool("payments"), "job_id": "j1", "job_try": 1}
    with pytest.raises(RuntimeError):
        await refund_order(ctx)

    assert reporter.events[0].queue == "payments"


@pytest.mark.asyncio
async def test_queue_falls_back_to_arq_default_without_pool() -> None:
    reporter = _CollectingReporter()

    @report_failures(name="refund_order", reporter=reporter)
    async def refund_order(ctx) -> None:
        raise RuntimeError("gateway timeout")

    with pytest.raises(RuntimeError):
        await refund_order({"job_id": "j2"})

    assert reporter.events[0].queue == "arq:queue"


def test_pool_cache_survives_event_loop_change(monkeypatch) -> None:
    created: list[object] = []

    async def fake_create_pool(redis_settings):  # noqa: ANN001
        await asyncio.sleep(0)
        pool = object()
        created.append(pool)
        return pool

    monkeypatch.setattr("queuewatch.integrations.arq_queue.create_pool", fake_create_pool)
    engine = ArqQueueEngine(Settings())

    async def concurrent_lookups():
        return await asyncio.gather(engine.get_pool("default"), engine.get_pool("default"))

    first = asyncio.run(concurrent_lookups())
    second = asyncio.run(concurrent_lookups())

    assert first[0] is first[1]
    assert second[0] is second[1]
    assert first[0] is not second[0]
    assert len(created) == 2
