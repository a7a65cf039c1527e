import asyncio

import httpx
import pytest

from readrise.services.resilience import RetryPolicy, call_with_retries, settle_all

NO_WAIT = RetryPolicy(max_attempts=3, base_delay_s=0.0, max_delay_s=0.0, jitter_s=0.0)


class _Response:
    def __init__(self, status_code: int):
        self.status_code = status_code


@pytest.mark.anyio
async def test_settle_all_keeps_order_and_isolates_failures():
    async def slow_ok():
        await asyncio.sleep(0.01)
        return "slow"

    async def boom():
        raise ValueError("rejected")

    async def fast_ok():
        return "fast"

    outcomes = await settle_all([slow_ok(), boom(), fast_ok()])

    assert [o.ok for o in outcomes] == [True, False, True]
    assert outcomes[0].value == "slow"
    assert isinstance(outcomes[1].error, ValueError)
    assert outcomes[2].value == "fast"


@pytest.mark.anyio
async def test_settle_all_with_nothing_to_do():
    assert await settle_all([]) == []


@pytest.mark.anyio
async def test_settle_all_lets_cancellation_through():
    async def cancelled():
        raise asyncio.CancelledError()

    async def fine():
        return "ok"

    with pytest.raises(asyncio.CancelledError):
        await settle_all([fine(), cancelled()])


@pytest.mark.anyio
async def test_call_with_retries_retries_transient_status():
    statuses = iter([503, 502, 200])
    attempts = []

    async def call():
        attempts.append(1)
        return _Response(next(statuses))

    result = await call_with_retries(call, retry_policy=NO_WAIT)

    assert result.status_code == 200
    assert len(attempts) == 3


@pytest.mark.anyio
async def test_call_with_retries_reraises_after_last_attempt():
    attempts = []

    async def call():
        attempts.append(1)
        raise httpx.ConnectError("refused")

    with pytest.raises(httpx.ConnectError):
        await call_with_retries(call, retry_policy=NO_WAIT)

    assert len(attempts) == 3


@pytest.mark.anyio
async def test_call_with_retries_does_not_retry_client_errors():
    attempts = []

    async def call():
        attempts.append(1)
        return _Response(409)

    assert (await call_with_retries(call, retry_policy=NO_WAIT)).status_code == 409
    assert len(attempts) == 1


@pytest.fixture
def anyio_backend():
    return "asyncio"
