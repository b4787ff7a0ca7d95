from __future__ import annotations

from dataclasses import dataclass, field
import hashlib
import hmac
import json
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from queuewatch.core.config import DEFAULT_CONNECTION, Settings
from queuewatch.domain.models import RetryRequest


logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Queuewatch-Signature"
WILDCARD_QUEUE = "*"


class RetryDispatcher(Protocol):
    async def dispatch_command(
        self,
        blob: str | None,
        *,
        job_class: str,
        connection: str | None,
        queue: str,
        delay: int = 0,
    ) -> str | None: ...


@dataclass(frozen=True)
class RetrySettings:
    # Shared secret is the reporting API key, dual-purposed as the signing key.
    secret: str | None
    allowed_queues: tuple[str, ...] = (WILDCARD_QUEUE,)
    delay: int = 0
    default_connection: str = DEFAULT_CONNECTION

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetrySettings":
        return cls(
            secret=settings.api_key,
            allowed_queues=tuple(settings.retry_allowed_queues),
            delay=max(0, int(settings.retry_delay)),
            default_connection=settings.retry_connection,
        )


@dataclass(frozen=True)
class RetryOutcome:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400


def compute_signature(secret: str, raw_body: bytes) -> str:
    # HMAC over the exact received bytes; any re-encoding would break verification.
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    # Headers arrive latin-1 decoded; a hex digest is ASCII, so anything else is a mismatch.
    candidate = signature.strip().lower()
    if not candidate.isascii():
        return False
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected.encode("ascii"), candidate.encode("ascii"))


def is_queue_allowed(queue: str, allowed_queues: tuple[str, ...] | list[str]) -> bool:
    if WILDCARD_QUEUE in allowed_queues:
        return True
    return queue in allowed_queues


def _failure(status_code: int, error: str, **extra: Any) -> RetryOutcome:
    return RetryOutcome(status_code=status_code, body={"success": False, "error": error, **extra})


def _validation_errors(exc: ValidationError) -> list[dict[str, Any]]:
    # Report field locations and messages only; input values may hold command blobs.
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def parse_retry_request(raw_body: bytes) -> RetryRequest:
    try:
        data = json.loads(raw_body)
    except (TypeError, ValueError, UnicodeDecodeError) as exc:
        raise ValueError("Request body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return RetryRequest.model_validate(data)


async def handle_retry(
    raw_body: bytes,
    signature: str | None,
    *,
    settings: RetrySettings,
    dispatcher: RetryDispatcher,
) -> RetryOutcome:
    """Run one inbound retry request through the authorization state machine.

    Order is fixed: signature, shape, queue allow-list, then dispatch. Nothing
    in the body is read before the signature verifies, and every path returns a
    structured outcome for the caller.
    """
    if not verify_signature(raw_body, signature, settings.secret):
        logger.warning("queuewatch_retry_signature_invalid signature_present=%s", bool(signature))
        return _failure(401, "Invalid signature")

    try:
        request = parse_retry_request(raw_body)
    except ValidationError as exc:
        return _failure(422, "Validation failed", errors=_validation_errors(exc))
    except ValueError as exc:
        return _failure(422, "Validation failed", errors=[{"loc": ["body"], "msg": str(exc)}])

    queue = request.target_queue()
    if not is_queue_allowed(queue, settings.allowed_queues):
        logger.warning("queuewatch_retry_queue_not_allowed queue=%s", queue)
        return _failure(403, "Queue not allowed for retry")

    try:
        job_id = await dispatcher.dispatch_command(
            request.command_blob(),
            job_class=request.job_class,
            connection=request.connection or settings.default_connection,
            queue=queue,
            delay=settings.delay,
        )
    except Exception as exc:  # noqa: BLE001 - every dispatch failure becomes a 500 outcome
        logger.error(
            "queuewatch_retry_failed job_class=%s queue=%s error=%s",
            request.job_class,
            queue,
            exc,
        )
        return _failure(500, f"Failed to dispatch job: {exc}")

    logger.info(
        "queuewatch_retry_dispatched job_class=%s queue=%s job_id=%s",
        request.job_class,
        queue,
        job_id,
    )
    return RetryOutcome(
        status_code=200,
        body={"success": True, "message": "Job dispatched successfully"},
    )
