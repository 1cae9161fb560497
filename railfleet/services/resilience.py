from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from railfleet.core.config import Settings, get_settings


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, OSError, httpx.TransportError)


def _status_of(exc: Exception) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures and throttled or 5xx upstream replies.
    if isinstance(exc, TransientException):
        return True
    status = _status_of(exc)
    return status is not None and (status == 429 or status >= 500)


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy(settings: Settings | None = None) -> RetryPolicy:
    settings = settings or get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=settings.ext_retry_max_attempts,
        backoff_ms=settings.ext_retry_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    operation: str = "external_call",
) -> Any:
    # Each attempt is bounded by the policy timeout; backoff doubles with jitter.
    policy = policy or default_retry_policy()
    retryable = retryable or default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.info(
                "external_call_retry operation=%s attempt=%s error=%s", operation, attempt, type(exc).__name__
            )
            await asyncio.sleep(sleep_s)
            attempt += 1
