"""Tests for the bounded existence poll used during promotion."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import pytest

from modqueue.store.retry import PromotionTimeoutError, StorageError, wait_until_visible


class FakeSleep:
    """Records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _visible_on(attempt: int) -> tuple[list[int], Callable[[], Awaitable[bool]]]:
    calls: list[int] = []

    async def check() -> bool:
        calls.append(len(calls) + 1)
        return len(calls) >= attempt

    return calls, check


class TestWaitUntilVisible:
    def test_immediately_visible(self) -> None:
        sleep = FakeSleep()
        calls, check = _visible_on(1)
        attempts = asyncio.run(wait_until_visible(check, sleep=sleep))
        assert attempts == 1
        assert sleep.delays == []

    def test_visible_after_retries(self) -> None:
        sleep = FakeSleep()
        calls, check = _visible_on(4)
        attempts = asyncio.run(
            wait_until_visible(check, attempts=30, interval=1.0, sleep=sleep)
        )
        assert attempts == 4
        assert len(calls) == 4
        assert sleep.delays == [1.0, 1.0, 1.0]

    def test_budget_exhausted_raises(self) -> None:
        sleep = FakeSleep()
        calls, check = _visible_on(100)
        with pytest.raises(PromotionTimeoutError, match="after 30 attempts"):
            asyncio.run(wait_until_visible(check, attempts=30, sleep=sleep))
        assert len(calls) == 30
        assert len(sleep.delays) == 29

    def test_timeout_is_a_storage_error(self) -> None:
        assert issubclass(PromotionTimeoutError, StorageError)

    def test_check_errors_propagate_without_retry(self) -> None:
        sleep = FakeSleep()
        calls: list[int] = []

        async def check() -> bool:
            calls.append(1)
            raise OSError("permission denied")

        with pytest.raises(OSError):
            asyncio.run(wait_until_visible(check, sleep=sleep))
        assert calls == [1]
        assert sleep.delays == []
