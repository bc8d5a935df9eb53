"""
Test suite for single-flight payroll scheduling.
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from payroll.core.payroll import PayrollService
from payroll.core.run import PayrollRun, RunStatus
from payroll.core.scheduler import PayrollScheduler, SchedulerState
from payroll.state.interface import StaticRecipientSource


@pytest.fixture
def service(test_config, mock_node_with_utxo, test_signer, sample_recipients, database):
    return PayrollService(
        recipient_source=StaticRecipientSource(sample_recipients),
        transaction_log=database,
        config=test_config,
        node=mock_node_with_utxo,
        signer=test_signer,
    )


@pytest.fixture
def scheduler(service, test_config) -> PayrollScheduler:
    return PayrollScheduler(service, test_config)


def _recorded_run(trigger: str) -> PayrollRun:
    run = PayrollRun(trigger=trigger)
    run.mark_recorded("aa" * 32)
    return run


class TestTrigger:
    """Tests for the IDLE/RUNNING state machine."""

    @pytest.mark.asyncio
    async def test_trigger_runs_payroll(self, scheduler, mock_node):
        assert scheduler.state == SchedulerState.IDLE

        run = await scheduler.trigger("manual")

        assert run.status == RunStatus.RECORDED
        assert run.trigger == "manual"
        assert mock_node.submit_calls == 1
        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.last_run is run

    @pytest.mark.asyncio
    async def test_concurrent_triggers_submit_once(self, scheduler, mock_node):
        """Two triggers in the same window produce exactly one submission."""
        mock_node.submit_delays = [0.1]

        results = await asyncio.gather(
            scheduler.trigger("schedule"),
            scheduler.trigger("manual"),
        )

        runs = [r for r in results if r is not None]
        assert len(runs) == 1
        assert results.count(None) == 1
        assert mock_node.submit_calls == 1
        assert scheduler.get_stats()["triggers_dropped"] == 1

    @pytest.mark.asyncio
    async def test_state_is_running_during_run(self, test_config):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_execute(trigger):
            started.set()
            await release.wait()
            return _recorded_run(trigger)

        service = MagicMock()
        service.execute = AsyncMock(side_effect=slow_execute)
        scheduler = PayrollScheduler(service, test_config)

        task = asyncio.create_task(scheduler.trigger("manual"))
        await started.wait()

        assert scheduler.state == SchedulerState.RUNNING
        assert scheduler.is_running is True
        assert await scheduler.trigger("manual") is None

        release.set()
        run = await task

        assert run.succeeded
        assert scheduler.state == SchedulerState.IDLE
        service.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trigger_after_completion(self, scheduler, mock_node):
        await scheduler.trigger("manual")
        second = await scheduler.trigger("manual")

        assert second is not None
        assert mock_node.submit_calls == 2

    @pytest.mark.asyncio
    async def test_exception_returns_to_idle(self, test_config):
        service = MagicMock()
        service.execute = AsyncMock(side_effect=ConnectionError("node unreachable"))
        scheduler = PayrollScheduler(service, test_config)

        run = await scheduler.trigger("manual")

        assert run.status == RunStatus.FAILED
        assert run.error_type == "ConnectionError"
        assert scheduler.state == SchedulerState.IDLE


class TestLoop:
    """Tests for the scheduling loop."""

    @pytest.mark.asyncio
    async def test_interval_loop_survives_failures(self, test_config):
        config = test_config.model_copy(update={"schedule_interval_seconds": 0.01})

        failed = PayrollRun(trigger="schedule")
        failed.mark_failed(RuntimeError("boom"))

        service = MagicMock()
        service.execute = AsyncMock(side_effect=[
            failed,
            RuntimeError("unexpected"),
            _recorded_run("schedule"),
            _recorded_run("schedule"),
            _recorded_run("schedule"),
        ])
        scheduler = PayrollScheduler(service, config)

        task = asyncio.create_task(scheduler.start())
        for _ in range(200):
            if service.execute.await_count >= 3:
                break
            await asyncio.sleep(0.01)

        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        assert service.execute.await_count >= 3
        assert scheduler.last_run is not None
        assert scheduler.state == SchedulerState.IDLE

    @pytest.mark.asyncio
    async def test_stop_before_first_tick(self, test_config):
        config = test_config.model_copy(update={"schedule_interval_seconds": 60})
        service = MagicMock()
        service.execute = AsyncMock()
        scheduler = PayrollScheduler(service, config)

        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.01)
        scheduler.stop()
        await asyncio.wait_for(task, timeout=1)

        service.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cron_next_fire_time(self, test_config):
        service = MagicMock()
        scheduler = PayrollScheduler(service, test_config)

        delay = scheduler._seconds_until_next()
        fire_time = scheduler.next_fire_time

        assert delay > 0
        assert fire_time.day == 1
        assert fire_time.hour == 10
        assert fire_time.minute == 0
        assert fire_time > datetime.now(fire_time.tzinfo)

    @pytest.mark.asyncio
    async def test_cron_never_repeats_a_tick(self, test_config):
        service = MagicMock()
        scheduler = PayrollScheduler(service, test_config)

        scheduler._seconds_until_next()
        first = scheduler.next_fire_time

        # Fired this tick; the next one must be a month later
        scheduler._last_fire_time = first
        scheduler._seconds_until_next()

        assert scheduler.next_fire_time > first

    def test_invalid_cron(self, service, test_config):
        config = test_config.model_copy(update={"schedule_cron": "not a cron"})

        with pytest.raises(ValueError):
            PayrollScheduler(service, config)
