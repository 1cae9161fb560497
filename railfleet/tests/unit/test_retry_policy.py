from __future__ import annotations

import httpx
import pytest

from railfleet.services.resilience import RetryPolicy, default_retryable, retry_async


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://upstream.example.test")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("upstream failed", request=request, response=response)


@pytest.mark.asyncio
async def test_retry_async_retries_transient() -> None:
    calls = {"count": 0}

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 2:
            raise TimeoutError("timeout")
        return "ok"

    result = await retry_async(flaky, policy=RetryPolicy(timeout_ms=100, max_attempts=2, backoff_ms=1))
    assert result == "ok"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_retry_async_gives_up_after_max_attempts() -> None:
    calls = {"count": 0}

    async def always_throttled() -> None:
        calls["count"] += 1
        raise _status_error(429)

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(always_throttled, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_client_errors() -> None:
    calls = {"count": 0}

    async def rejected() -> None:
        calls["count"] += 1
        raise _status_error(400)

    with pytest.raises(httpx.HTTPStatusError):
        await retry_async(rejected, policy=RetryPolicy(timeout_ms=100, max_attempts=3, backoff_ms=1))
    assert calls["count"] == 1


def test_default_retryable_classification() -> None:
    assert default_retryable(TimeoutError())
    assert default_retryable(httpx.ConnectError("refused"))
    assert default_retryable(_status_error(503))
    assert default_retryable(_status_error(429))
    assert not default_retryable(_status_error(404))
    assert not default_retryable(ValueError("bad payload"))
