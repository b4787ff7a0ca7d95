from __future__ import annotations

from functools import lru_cache
import logging

from queuewatch.core.config import Settings, get_settings
from queuewatch.domain.events import FailureEvent
from queuewatch.domain.models import FailureReport
from queuewatch.integrations.arq_queue import ArqQueueEngine
from queuewatch.services.client import QueuewatchClient
from queuewatch.services.filtering import FilterConfig, should_report
from queuewatch.services.reports import ReportSettings, build_report
from queuewatch.workers.delivery import (
    DELIVERY_TASK_NAME,
    DeliveryOutcome,
    DeliveryPolicy,
    deliver_inline,
)


logger = logging.getLogger(__name__)

SYNC_QUEUE = "sync"


class FailureReporter:
    """Boundary adapter from host failure callbacks to the report pipeline.

    Composes the pure filter and builder, then hands the report to a delivery
    task: inline for the ``sync`` queue, otherwise enqueued on the reporting queue.
    """

    def __init__(
        self,
        *,
        filter_config: FilterConfig,
        report_settings: ReportSettings,
        delivery_policy: DeliveryPolicy,
        client: QueuewatchClient,
        engine: ArqQueueEngine | None = None,
        queue: str = "default",
        connection: str | None = None,
    ) -> None:
        self.filter_config = filter_config
        self.report_settings = report_settings
        self.delivery_policy = delivery_policy
        self.client = client
        self.engine = engine
        self.queue = queue
        self.connection = connection

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: QueuewatchClient | None = None,
        engine: ArqQueueEngine | None = None,
    ) -> "FailureReporter":
        return cls(
            filter_config=FilterConfig.from_settings(settings),
            report_settings=ReportSettings.from_settings(settings),
            delivery_policy=DeliveryPolicy.from_settings(settings),
            client=client or QueuewatchClient.from_settings(settings),
            engine=engine or ArqQueueEngine(settings),
            queue=settings.queue,
            connection=settings.queue_connection,
        )

    async def handle(self, event: FailureEvent) -> FailureReport | None:
        if not should_report(event, self.filter_config):
            return None
        report = build_report(event, self.report_settings)
        await self.dispatch(report)
        return report

    async def dispatch(self, report: FailureReport) -> DeliveryOutcome | None:
        if self.queue == SYNC_QUEUE:
            return await deliver_inline(report, client=self.client, policy=self.delivery_policy)
        if self.engine is None:
            logger.warning("queuewatch_report_dropped reason=no_queue_engine")
            return None
        try:
            await self.engine.enqueue(
                DELIVERY_TASK_NAME,
                report.to_payload(),
                connection=self.connection,
                queue=self.queue,
            )
        except Exception:  # noqa: BLE001 - enqueue failures must not reach the failing job
            logger.exception(
                "queuewatch_report_enqueue_failed queue=%s job=%s",
                self.queue,
                report.job.name,
            )
        return None


@lru_cache
def get_failure_reporter() -> FailureReporter:
    return FailureReporter.from_settings(get_settings())
