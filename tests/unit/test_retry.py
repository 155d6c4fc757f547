"""Unit tests for write-conflict retries."""

from unittest.mock import AsyncMock

import pytest

from charter.services.retry import RetryPolicy, is_write_conflict
from charter.storage import WriteConflictError


class MongoLikeError(Exception):
    def __init__(self, code=None, code_name=None):
        super().__init__("operation failed")
        self.code = code
        self.code_name = code_name


def test_write_conflict_recognition():
    assert is_write_conflict(WriteConflictError("reservations", "r1"))
    assert is_write_conflict(MongoLikeError(code=112))
    assert is_write_conflict(MongoLikeError(code_name="WriteConflict"))
    assert is_write_conflict(RuntimeError("Transaction aborted: write CONFLICT"))
    assert not is_write_conflict(ValueError("bad input"))
    assert not is_write_conflict(MongoLikeError(code=11000))


def test_delay_grows_linearly_with_bounded_jitter():
    policy = RetryPolicy(base_delay=0.15, jitter=0.1)

    for attempt in range(4):
        delay = policy.delay_for(attempt)
        assert 0.15 * (attempt + 1) <= delay <= 0.15 * (attempt + 1) + 0.1


@pytest.mark.asyncio
async def test_retries_conflicts_until_success():
    sleep = AsyncMock()
    operation = AsyncMock(
        side_effect=[WriteConflictError("reservations", "r1"), WriteConflictError("reservations", "r1"), "ok"]
    )

    result = await RetryPolicy(sleep=sleep).run(operation)

    assert result == "ok"
    assert operation.await_count == 3
    assert sleep.await_count == 2


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    sleep = AsyncMock()
    operation = AsyncMock(side_effect=WriteConflictError("reservations", "r1"))

    with pytest.raises(WriteConflictError):
        await RetryPolicy(max_retries=4, sleep=sleep).run(operation)

    assert operation.await_count == 5
    assert sleep.await_count == 4


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    sleep = AsyncMock()
    operation = AsyncMock(side_effect=ValueError("bad input"))

    with pytest.raises(ValueError):
        await RetryPolicy(sleep=sleep).run(operation)

    assert operation.await_count == 1
    sleep.assert_not_awaited()
