"""Unit tests for the runtime scope and the background scheduler."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from charter.services.runtime_scope import InstallmentReminder, RuntimeScope
from charter.services.scheduler import SchedulerService, seconds_until_next_run
from conftest import NOW


class TestRuntimeScope:
    """Tests for cooldowns, throttles and cache cleanup."""

    def test_cooldowns_expire(self, scope, clock):
        scope.block_rate_limited(30)
        scope.block_auth(60)

        assert scope.rate_limit_remaining() == 30
        assert scope.auth_block_remaining() == 60

        clock.advance(seconds=45)

        assert scope.rate_limit_remaining() == 0
        assert scope.auth_block_remaining() == 15

    def test_link_check_throttle(self, scope, clock):
        assert scope.claim_link_check("MB-LINK-1", 20)
        assert not scope.claim_link_check("MB-LINK-1", 20)
        assert scope.claim_link_check("MB-LINK-2", 20)

        clock.advance(seconds=20)

        assert scope.claim_link_check("MB-LINK-1", 20)

    def test_clear_caches_keeps_reminders(self, scope):
        scope.processed_payments.add("res-1-0-MB-LINK-1")
        scope.activated_installments.add("res-1-installment-1")
        scope.claim_link_check("MB-LINK-1", 20)
        scope.installment_reminders["res-1-1"] = InstallmentReminder("res-1", 1, NOW)

        scope.clear_caches()

        assert scope.processed_payments == set()
        assert scope.activated_installments == set()
        assert scope.last_checked_by_link == {}
        assert "res-1-1" in scope.installment_reminders

    def test_default_clock_is_aware_utc(self):
        assert RuntimeScope().now().utcoffset() == timedelta(0)


@pytest.mark.parametrize(
    "now, expected_hours",
    [
        (datetime(2026, 3, 2, 8, 0), 1),
        (datetime(2026, 3, 2, 9, 0), 24),
        (datetime(2026, 3, 2, 10, 0), 23),
        (datetime(2026, 3, 2, 23, 0), 10),
    ],
)
def test_seconds_until_next_daily_run(now, expected_hours):
    assert seconds_until_next_run(now, 9, 0) == expected_hours * 3600


class TestSchedulerService:
    """Tests for scheduler start and stop."""

    def make_service(self, scope):
        poller = MagicMock()
        poller.tick = AsyncMock(return_value={})
        activation = MagicMock()
        activation.run = AsyncMock(return_value={})
        service = SchedulerService(
            poller,
            activation,
            scope,
            poll_interval_seconds=3600,
            cleanup_interval_seconds=3600,
            local_clock=lambda: datetime(2026, 3, 2, 8, 0),
        )
        return service, poller, activation

    @pytest.mark.asyncio
    async def test_start_runs_poll_and_activation_immediately(self, scope):
        service, poller, activation = self.make_service(scope)

        await service.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert service.running
        poller.tick.assert_awaited_once()
        activation.run.assert_awaited_once()

        await service.stop()
        assert not service.running
        assert service._tasks == []

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, scope):
        service, _, _ = self.make_service(scope)

        await service.start()
        await service.start()
        await asyncio.sleep(0)

        assert len(service._tasks) == 3
        await service.stop()

    @pytest.mark.asyncio
    async def test_failing_job_does_not_stop_loops(self, scope):
        service, poller, activation = self.make_service(scope)
        poller.tick.side_effect = RuntimeError("store down")
        activation.run.side_effect = RuntimeError("store down")

        await service.start()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        poller.tick.assert_awaited_once()
        assert all(not task.done() for task in service._tasks)
        await service.stop()
