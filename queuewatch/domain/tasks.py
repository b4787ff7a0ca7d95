from __future__ import annotations

from typing import Any, Callable, TypeVar


F = TypeVar("F", bound=Callable[..., Any])

INTERNAL_TASK_ATTR = "is_internal_reporting_task"

_internal_task_names: set[str] = set()


def internal_reporting_task(func: F) -> F:
    # Tag the reporter's own tasks so their failures never enter the report pipeline.
    setattr(func, INTERNAL_TASK_ATTR, True)
    _internal_task_names.add(func.__qualname__)
    _internal_task_names.add(f"{func.__module__}.{func.__qualname__}")
    _internal_task_names.add(f"{func.__module__}:{func.__qualname__}")
    return func


def is_internal_reporting_task(job: object) -> bool:
    if isinstance(job, str):
        return job in _internal_task_names
    return bool(getattr(job, INTERNAL_TASK_ATTR, False))
