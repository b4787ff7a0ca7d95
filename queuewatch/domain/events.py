from __future__ import annotations

import copy
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Mapping


@dataclass(frozen=True)
class StackFrame:
    file: str | None = None
    line: int | None = None
    function: str | None = None
    cls: str | None = None
    # Locals are captured by some hosts; reports always drop them.
    locals: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class ExceptionDetails:
    # Snapshot of the error that failed the job, detached from the live exception object.
    type_name: str
    message: str
    code: int = 0
    file: str | None = None
    line: int | None = None
    frames: tuple[StackFrame, ...] = ()

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExceptionDetails":
        # Frames are ordered innermost-first so the raising frame is frame 0.
        frames = tuple(reversed(_walk_traceback(exc.__traceback__)))
        origin = frames[0] if frames else StackFrame()
        return cls(
            type_name=_qualified_type_name(exc),
            message=str(exc),
            code=_exception_code(exc),
            file=origin.file,
            line=origin.line,
            frames=frames,
        )


@dataclass(frozen=True)
class FailureEvent:
    """A job that exhausted execution and raised.

    Hosts build this synchronously inside their failure callback; everything the
    report pipeline needs is copied in, so the event outlives the callback.
    """

    job_id: str | None
    job_uuid: str | None
    job_name: str
    queue: str | None
    connection: str | None
    attempts: int
    max_tries: int | None
    timeout: float | None
    exception: ExceptionDetails
    payload: Mapping[str, Any] = field(default_factory=dict)

    def resolved_job_class(self) -> str:
        # Prefer the display name, then the raw job type, then the host-resolved name.
        payload = self.payload if isinstance(self.payload, Mapping) else {}
        for key in ("displayName", "job"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return self.job_name

    def payload_copy(self) -> dict[str, Any] | None:
        if not isinstance(self.payload, Mapping):
            return None
        return copy.deepcopy(dict(self.payload))


def _walk_traceback(tb: TracebackType | None) -> list[StackFrame]:
    frames: list[StackFrame] = []
    while tb is not None:
        frame = tb.tb_frame
        code = frame.f_code
        frames.append(
            StackFrame(
                file=code.co_filename,
                line=tb.tb_lineno,
                function=code.co_name,
                cls=_frame_class_name(frame.f_locals),
            )
        )
        tb = tb.tb_next
    return frames


def _frame_class_name(frame_locals: Mapping[str, Any]) -> str | None:
    if "self" in frame_locals:
        return type(frame_locals["self"]).__qualname__
    owner = frame_locals.get("cls")
    if isinstance(owner, type):
        return owner.__qualname__
    return None


def _qualified_type_name(exc: BaseException) -> str:
    exc_type = type(exc)
    module = exc_type.__module__
    if module in {"builtins", "__main__"}:
        return exc_type.__qualname__
    return f"{module}.{exc_type.__qualname__}"


def _exception_code(exc: BaseException) -> int:
    # Python errors rarely carry numeric codes; surface errno/code attributes when present.
    for attr in ("errno", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return 0
