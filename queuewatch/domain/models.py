from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TraceFrame(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    file: str | None = None
    line: int | None = None
    function: str | None = None
    class_name: str | None = Field(default=None, alias="class")


class JobSummary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str | None = None
    uuid: str | None = None
    name: str
    class_name: str = Field(alias="class")
    queue: str | None = None
    connection: str | None = None
    attempts: int = 0
    max_tries: int | None = None
    timeout: float | None = None
    # Only set when job data collection is enabled; unset fields are dropped on the wire.
    payload: dict[str, Any] | None = None


class ExceptionSummary(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    class_name: str = Field(alias="class")
    message: str = ""
    code: int = 0
    file: str | None = None
    line: int | None = None
    trace: list[TraceFrame] = Field(default_factory=list, max_length=20)


class ServerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    hostname: str | None = None
    runtime_version: str | None = None
    framework_version: str | None = None


class FailureReport(BaseModel):
    # Bounded, serializable description of one job failure sent to the remote service.
    model_config = ConfigDict(frozen=True)

    project: str
    environment: str
    job: JobSummary
    exception: ExceptionSummary
    failed_at: str
    server: ServerInfo
    is_test: bool | None = None

    def to_payload(self) -> dict[str, Any]:
        # Drop fields the builder never set (job.payload, is_test) but keep explicit nulls.
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class RetryAction(str, Enum):
    # Open set of remote actions; only retry is currently accepted.
    RETRY = "retry"


class RetryRequest(BaseModel):
    # Inbound retry instruction; only parsed after the signature check passes.
    model_config = ConfigDict(extra="ignore")

    action: RetryAction
    job_uuid: str | None = None
    job_id: str | None = None
    job_class: str = Field(min_length=1)
    connection: str | None = None
    queue: str | None = None
    payload: dict[str, Any]

    def target_queue(self) -> str:
        return self.queue or "default"

    def command_blob(self) -> str | None:
        data = self.payload.get("data")
        if not isinstance(data, dict):
            return None
        command = data.get("command")
        if isinstance(command, str) and command:
            return command
        return None
