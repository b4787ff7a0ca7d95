from __future__ import annotations

from typing import Any

import httpx

from queuewatch.core.config import DEFAULT_ENDPOINT, Settings
from queuewatch.core.errors import ReportingNotConfiguredError
from queuewatch.domain.models import FailureReport


AGENT_HEADER = "X-Queuewatch-Agent"
AGENT_NAME = "queuewatch/python 1.0"
DEFAULT_TIMEOUT_S = 5.0


class QueuewatchClient:
    """Stateless transport to the Queuewatch API.

    Every call opens a short-lived ``httpx.AsyncClient`` with the bearer token,
    JSON content negotiation and the configured timeout. Retry policy belongs to
    the delivery task, not to this class.
    """

    def __init__(
        self,
        api_key: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or ""
        self._endpoint = (endpoint or DEFAULT_ENDPOINT).rstrip("/")
        self._timeout = float(timeout) if timeout is not None else DEFAULT_TIMEOUT_S
        # Injected in tests to stub the remote service.
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "QueuewatchClient":
        return cls(
            api_key=settings.api_key,
            endpoint=settings.normalized_endpoint,
            timeout=settings.timeout,
            transport=transport,
        )

    @property
    def api_key(self) -> str:
        return self._api_key

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def report_failure(self, report: FailureReport | dict[str, Any]) -> httpx.Response:
        payload = report.to_payload() if isinstance(report, FailureReport) else report
        return await self._request("POST", "/api/v1/failures", json=payload)

    async def test_connection(self) -> httpx.Response:
        return await self._request("GET", "/api/v1/ping")

    async def get_project(self) -> httpx.Response:
        return await self._request("GET", "/api/v1/project")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            AGENT_HEADER: AGENT_NAME,
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        # Callers must guard with is_configured(); an empty bearer token is never sent.
        if not self.is_configured():
            raise ReportingNotConfiguredError("Queuewatch API key is not configured")
        async with httpx.AsyncClient(
            base_url=self._endpoint,
            timeout=self._timeout,
            headers=self._headers(),
            transport=self._transport,
        ) as client:
            return await client.request(method, path, **kwargs)
