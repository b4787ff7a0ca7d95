from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

import httpx
from arq import Retry, func
from arq.connections import RedisSettings

from queuewatch.core.config import Settings, get_settings
from queuewatch.core.logging import configure_logging
from queuewatch.domain.models import FailureReport
from queuewatch.domain.tasks import internal_reporting_task
from queuewatch.services.client import QueuewatchClient


logger = logging.getLogger(__name__)

DELIVERY_TASK_NAME = "send_failure_report"
DEFAULT_TRIES = 3
DEFAULT_BACKOFF_SECONDS = 10


@dataclass(frozen=True)
class DeliveryPolicy:
    tries_allowed: int = DEFAULT_TRIES
    backoff_seconds: int = DEFAULT_BACKOFF_SECONDS

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeliveryPolicy":
        return cls(
            tries_allowed=max(1, int(settings.delivery_tries)),
            backoff_seconds=max(0, int(settings.delivery_backoff_seconds)),
        )


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    REJECTED = "rejected"
    EXHAUSTED = "exhausted"


def _log_exhausted(attempt: int, reason: str) -> None:
    # Terminal failures are logged locally only; they must never produce another report.
    logger.warning(
        "queuewatch_delivery_exhausted attempts=%s reason=%s",
        attempt,
        reason,
    )


async def deliver_report(
    report: FailureReport | dict[str, Any],
    *,
    client: QueuewatchClient,
    attempt: int,
    policy: DeliveryPolicy,
) -> DeliveryOutcome:
    """Send one report, classifying the result for the queue engine.

    Raises ``arq.Retry`` with the policy backoff for 5xx responses and transport
    errors while attempts remain. 4xx responses are final. Nothing else escapes,
    so a reporting failure cannot cascade into a new job failure.
    """
    if not client.is_configured():
        return DeliveryOutcome.SKIPPED

    try:
        response = await client.report_failure(report)
    except httpx.HTTPError as exc:
        logger.error(
            "queuewatch_delivery_transport_error attempt=%s error=%s",
            attempt,
            exc,
        )
        if attempt >= policy.tries_allowed:
            _log_exhausted(attempt, f"transport_error:{type(exc).__name__}")
            return DeliveryOutcome.EXHAUSTED
        raise Retry(defer=policy.backoff_seconds) from exc

    if response.is_success:
        return DeliveryOutcome.DELIVERED

    logger.warning(
        "queuewatch_delivery_failed status=%s attempt=%s body=%s",
        response.status_code,
        attempt,
        response.text[:512],
    )
    if response.is_server_error:
        if attempt >= policy.tries_allowed:
            _log_exhausted(attempt, f"http_{response.status_code}")
            return DeliveryOutcome.EXHAUSTED
        raise Retry(defer=policy.backoff_seconds)
    # Client errors mean the request or credential was rejected; retrying cannot help.
    return DeliveryOutcome.REJECTED


async def deliver_inline(
    report: FailureReport | dict[str, Any],
    *,
    client: QueuewatchClient,
    policy: DeliveryPolicy,
) -> DeliveryOutcome:
    # Sync mode mimics worker retries without a queue; backoff is skipped in-process.
    attempt = 1
    while True:
        try:
            return await deliver_report(report, client=client, attempt=attempt, policy=policy)
        except Retry:
            attempt += 1
            continue


@internal_reporting_task
async def send_failure_report(ctx, report: dict) -> str:
    # Consume queued reports; the attempt counter comes from the queue engine.
    settings = get_settings()
    client = ctx.get("queuewatch_client") or QueuewatchClient.from_settings(settings)
    policy = ctx.get("queuewatch_delivery_policy") or DeliveryPolicy.from_settings(settings)
    outcome = await deliver_report(
        report,
        client=client,
        attempt=ctx.get("job_try", 1),
        policy=policy,
    )
    return outcome.value


async def _startup(ctx) -> None:
    # Build the client once per worker so every delivery shares one configuration.
    configure_logging()
    settings = get_settings()
    ctx["queuewatch_client"] = QueuewatchClient.from_settings(settings)
    ctx["queuewatch_delivery_policy"] = DeliveryPolicy.from_settings(settings)


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(
        settings.connection_dsn(settings.queue_connection) or settings.redis_url
    )
    queue_name = settings.queue
    functions = [
        func(
            send_failure_report,
            name=DELIVERY_TASK_NAME,
            max_tries=max(1, settings.delivery_tries),
        )
    ]
    on_startup = _startup
