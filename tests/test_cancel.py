import asyncio

import pytest

from lanwatch.cancel import CancellationToken, ScanCancelled


def test_run_returns_result():
    async def answer():
        await asyncio.sleep(0)
        return 42

    async def scenario():
        return await CancellationToken().run(answer(), timeout=1)

    assert asyncio.run(scenario()) == 42


def test_run_times_out():
    async def scenario():
        await CancellationToken().run(asyncio.sleep(5), timeout=0.01)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(scenario())


def test_cancel_interrupts_pending_operation():
    async def scenario():
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)
        await token.run(asyncio.sleep(5))

    with pytest.raises(ScanCancelled):
        asyncio.run(scenario())


def test_already_cancelled_token_fails_fast():
    async def scenario():
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        await token.run(asyncio.sleep(5), timeout=10)

    with pytest.raises(ScanCancelled):
        asyncio.run(scenario())


def test_raise_if_cancelled():
    async def scenario():
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        token.raise_if_cancelled()

    with pytest.raises(ScanCancelled):
        asyncio.run(scenario())
