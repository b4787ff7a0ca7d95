from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import metadata
import logging
import platform
import socket
from typing import Any
from uuid import uuid4

from queuewatch.core.config import Settings
from queuewatch.domain.events import FailureEvent, StackFrame
from queuewatch.domain.models import (
    ExceptionSummary,
    FailureReport,
    JobSummary,
    ServerInfo,
    TraceFrame,
)


logger = logging.getLogger(__name__)

# Bound trace size to keep payloads small and avoid shipping deep framework stacks.
MAX_TRACE_FRAMES = 20
TEST_JOB_NAME = "QueuewatchTestJob"


@dataclass(frozen=True)
class ReportSettings:
    project: str
    environment: str
    collect_job_data: bool = True
    # Retry needs the command blob, so it is only kept when retry is enabled.
    retry_enabled: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReportSettings":
        return cls(
            project=settings.project_name,
            environment=settings.environment,
            collect_job_data=settings.collect_job_data,
            retry_enabled=settings.retry_enabled,
        )


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso8601(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def server_info() -> ServerInfo:
    try:
        hostname = socket.gethostname()
    except OSError:
        hostname = None
    try:
        framework_version = metadata.version("arq")
    except metadata.PackageNotFoundError:
        framework_version = None
    return ServerInfo(
        hostname=hostname,
        runtime_version=platform.python_version(),
        framework_version=framework_version,
    )


def format_trace(frames: Any) -> list[TraceFrame]:
    # Keep location fields only; locals and arguments never leave the process.
    formatted: list[TraceFrame] = []
    for frame in list(frames or ())[:MAX_TRACE_FRAMES]:
        if not isinstance(frame, StackFrame):
            continue
        formatted.append(
            TraceFrame(
                file=_str_or_none(frame.file),
                line=_int_or_none(frame.line),
                function=_str_or_none(frame.function),
                class_name=_str_or_none(frame.cls),
            )
        )
    return formatted


def job_payload(event: FailureEvent, settings: ReportSettings) -> dict[str, Any] | None:
    try:
        payload = event.payload_copy()
    except Exception:  # noqa: BLE001 - an uncopyable payload is reported as null
        logger.debug("queuewatch_payload_copy_failed job=%s", event.job_name, exc_info=True)
        return None
    if payload is None:
        return None
    if not settings.retry_enabled:
        data = payload.get("data")
        if isinstance(data, dict):
            data.pop("command", None)
    return payload


def build_report(
    event: FailureEvent,
    settings: ReportSettings,
    *,
    now: datetime | None = None,
) -> FailureReport:
    """Map a failure event onto the report sent to the remote service.

    The timestamp is taken at build time. Missing optional fields become nulls
    or defaults instead of raising, so a malformed event still produces a report.
    """
    exception = event.exception
    job_fields: dict[str, Any] = {
        "id": _str_or_none(event.job_id),
        "uuid": _str_or_none(event.job_uuid),
        "name": _str_or_none(event.job_name) or "unknown",
        "class_name": _str_or_none(event.resolved_job_class()) or "unknown",
        "queue": _str_or_none(event.queue),
        "connection": _str_or_none(event.connection),
        "attempts": _int_or_default(event.attempts, 0),
        "max_tries": _int_or_none(event.max_tries),
        "timeout": event.timeout if isinstance(event.timeout, (int, float)) else None,
    }
    if settings.collect_job_data:
        job_fields["payload"] = job_payload(event, settings)

    return FailureReport(
        project=settings.project,
        environment=settings.environment,
        job=JobSummary(**job_fields),
        exception=ExceptionSummary(
            class_name=_str_or_none(getattr(exception, "type_name", None)) or "Exception",
            message=_str_or_none(getattr(exception, "message", None)) or "",
            code=_int_or_default(getattr(exception, "code", 0), 0),
            file=_str_or_none(getattr(exception, "file", None)),
            line=_int_or_none(getattr(exception, "line", None)),
            trace=format_trace(getattr(exception, "frames", ())),
        ),
        failed_at=_iso8601(now or _utc_now()),
        server=server_info(),
    )


def build_test_report(settings: ReportSettings, *, now: datetime | None = None) -> FailureReport:
    # Synthetic report used by the connection test script; flagged so dashboards can hide it.
    return FailureReport(
        project=settings.project,
        environment=settings.environment,
        job=JobSummary(
            id=f"test-{uuid4().hex[:13]}",
            uuid=str(uuid4()),
            name=TEST_JOB_NAME,
            class_name="scripts.queuewatch_test",
            queue="default",
            connection="sync",
            attempts=1,
            max_tries=3,
            timeout=None,
        ),
        exception=ExceptionSummary(
            class_name="Exception",
            message="This is a test failure from the queuewatch test script",
            code=0,
            file=__file__,
            line=None,
            trace=[],
        ),
        failed_at=_iso8601(now or _utc_now()),
        server=server_info(),
        is_test=True,
    )


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _int_or_default(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    return default


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None
