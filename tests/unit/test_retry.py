import asyncio

import pytest

from nanochat.core.exceptions import NetworkTimeout, NotFound, RemoteAPIError
from nanochat.utils import retry


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(retry.asyncio, "sleep", fake_sleep)
    return delays


def flaky(errors, result="ok"):
    calls = []

    async def fn():
        calls.append(1)
        if errors:
            raise errors.pop(0)
        return result

    return fn, calls


def test_retries_retryable_errors(no_sleep):
    fn, calls = flaky([NetworkTimeout(), RemoteAPIError(503)])
    assert asyncio.run(retry.async_retry(fn, retries=2, base_delay=0.1, max_delay=1.0)) == "ok"
    assert len(calls) == 3
    assert no_sleep == [0.1, 0.2]


def test_gives_up_after_retries():
    fn, calls = flaky([NetworkTimeout(), NetworkTimeout(), NetworkTimeout()])
    with pytest.raises(NetworkTimeout):
        asyncio.run(retry.async_retry(fn, retries=2))
    assert len(calls) == 3


def test_non_retryable_errors_raise_at_once():
    fn, calls = flaky([NotFound(), RemoteAPIError(400)])
    with pytest.raises(NotFound):
        asyncio.run(retry.async_retry(fn))
    assert len(calls) == 1


def test_delay_is_capped(no_sleep):
    fn, _ = flaky([NetworkTimeout()] * 4)
    asyncio.run(retry.async_retry(fn, retries=4, base_delay=1.0, max_delay=2.5))
    assert no_sleep == [1.0, 2.0, 2.5, 2.5]


def test_extra_exception_types():
    fn, calls = flaky([ValueError("transient")])
    assert asyncio.run(retry.async_retry(fn, retry_exceptions=(ValueError,))) == "ok"
    assert len(calls) == 2
