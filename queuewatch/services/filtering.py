from __future__ import annotations

from dataclasses import dataclass

from queuewatch.core.config import Settings
from queuewatch.domain.events import FailureEvent
from queuewatch.domain.tasks import is_internal_reporting_task


@dataclass(frozen=True)
class FilterConfig:
    enabled: bool
    api_key_present: bool
    ignored_job_classes: frozenset[str] = frozenset()
    ignored_queues: frozenset[str] = frozenset()
    ignored_exception_types: frozenset[str] = frozenset()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FilterConfig":
        return cls(
            enabled=settings.enabled,
            api_key_present=bool(settings.api_key),
            ignored_job_classes=frozenset(settings.ignored_jobs),
            ignored_queues=frozenset(settings.ignored_queues),
            ignored_exception_types=frozenset(settings.ignored_exceptions),
        )


def should_report(event: FailureEvent, config: FilterConfig) -> bool:
    """Decide whether a job failure is eligible for reporting.

    Pure and total: cheapest checks run first and the first failing rule wins.
    Failures of the reporter's own delivery task are never eligible, which keeps
    a broken remote service from feeding reports back into the queue.
    """
    if not config.enabled:
        return False
    if not config.api_key_present:
        return False
    job_class = event.resolved_job_class()
    if is_internal_reporting_task(job_class) or is_internal_reporting_task(event.job_name):
        return False
    if job_class in config.ignored_job_classes:
        return False
    if event.queue in config.ignored_queues:
        return False
    if event.exception.type_name in config.ignored_exception_types:
        return False
    return True
