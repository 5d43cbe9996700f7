"""Tests for the retrying HTTP helper shared by mail, AI and ERP clients."""

import httpx
import pytest

from aris.services.http_service import backoff_delay, request_with_retries

REQUEST = httpx.Request("GET", "https://erp.test/ping")


def _scripted(*outcomes):
    """Request function that plays back responses or raises exceptions in order."""
    queue = list(outcomes)
    calls = []

    async def request_fn():
        calls.append(1)
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, request=REQUEST)

    return request_fn, calls


async def _run(request_fn, **kwargs):
    return await request_with_retries(request_fn, base_delay=0, max_delay=0, **kwargs)


@pytest.mark.asyncio
async def test_server_error_then_success():
    request_fn, calls = _scripted(502, 200)
    response = await _run(request_fn)
    assert response.status_code == 200
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_rate_limit_is_retried_until_exhausted():
    request_fn, calls = _scripted(429, 429, 429)
    response = await _run(request_fn)
    assert response.status_code == 429
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_client_errors_return_immediately():
    request_fn, calls = _scripted(401)
    assert (await _run(request_fn)).status_code == 401
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_error_recovers():
    request_fn, calls = _scripted(httpx.ReadTimeout("slow", request=REQUEST), 200)
    assert (await _run(request_fn)).status_code == 200
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_transport_error_propagates_on_last_attempt():
    request_fn, calls = _scripted(
        httpx.ConnectError("refused", request=REQUEST),
        httpx.ConnectError("refused", request=REQUEST),
    )
    with pytest.raises(httpx.ConnectError):
        await _run(request_fn, max_attempts=2)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_custom_retry_statuses():
    request_fn, calls = _scripted(409, 200)
    assert (await _run(request_fn, retry_statuses={409})).status_code == 200
    assert len(calls) == 2


def test_backoff_grows_and_is_capped():
    assert backoff_delay(3, 0, 10) == 0
    assert 1.0 <= backoff_delay(1, 0.5, 4.0) <= 1.5
    assert 4.0 <= backoff_delay(10, 0.5, 4.0) <= 6.0
