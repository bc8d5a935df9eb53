"""
Payroll Scheduler - single-flight triggering of payroll runs.

Owns an explicit two-state machine. A trigger moves the scheduler from
IDLE to RUNNING; completion moves it back. Triggers arriving while a run
is in flight are dropped, never queued.
"""

import asyncio
import threading
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

import structlog
from apscheduler.triggers.cron import CronTrigger

from payroll.config import PayrollConfig, get_config
from payroll.core.payroll import PayrollService
from payroll.core.run import PayrollRun, RunStatus

logger = structlog.get_logger(__name__)


class SchedulerState(str, Enum):
    """State of the payroll scheduler."""
    IDLE = "idle"
    RUNNING = "running"


class PayrollScheduler:
    """
    Triggers payroll runs on a cron schedule or a fixed interval.

    Every entry into the payroll path goes through ``trigger``, including
    manual runs from the API, so at most one run touches the funding
    address at any time.

    Usage:
        ```python
        scheduler = PayrollScheduler(service)
        task = asyncio.create_task(scheduler.start())
        ...
        scheduler.stop()
        await task
        ```
    """

    def __init__(
        self,
        service: PayrollService,
        config: Optional[PayrollConfig] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            service: Payroll service executing the runs
            config: Payroll configuration (schedule settings)
        """
        self.service = service
        self.config = config or get_config()

        self._state = SchedulerState.IDLE
        self._lock = threading.Lock()

        self._cron: Optional[CronTrigger] = None
        if not self.config.schedule_interval_seconds:
            self._cron = CronTrigger.from_crontab(
                self.config.schedule_cron,
                timezone=self.config.schedule_timezone,
            )

        self._looping = False
        self._stop_event: Optional[asyncio.Event] = None
        self._next_fire_time: Optional[datetime] = None
        self._last_fire_time: Optional[datetime] = None

        # Stats
        self._runs_started = 0
        self._triggers_dropped = 0
        self._last_run: Optional[PayrollRun] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def last_run(self) -> Optional[PayrollRun]:
        return self._last_run

    @property
    def next_fire_time(self) -> Optional[datetime]:
        return self._next_fire_time

    def _try_acquire(self) -> bool:
        """Compare-and-swap IDLE -> RUNNING."""
        with self._lock:
            if self._state != SchedulerState.IDLE:
                return False
            self._state = SchedulerState.RUNNING
            return True

    def _release(self) -> None:
        with self._lock:
            self._state = SchedulerState.IDLE

    async def trigger(self, source: str = "manual") -> Optional[PayrollRun]:
        """
        Start a payroll run unless one is already in flight.

        Args:
            source: What caused the trigger ("schedule", "manual", ...)

        Returns:
            The finished run, or None if the trigger was dropped
        """
        if not self._try_acquire():
            self._triggers_dropped += 1
            logger.warning("trigger_dropped", source=source, reason="run_in_progress")
            return None

        self._runs_started += 1
        logger.info("trigger_accepted", source=source)

        try:
            run = await self.service.execute(source)
        except Exception as e:
            # Raised before the run started, e.g. the node could not be reached.
            run = PayrollRun(trigger=source)
            run.mark_failed(e)
            logger.error("payroll_trigger_failed", source=source, error=str(e))
        finally:
            self._release()

        self._last_run = run
        return run

    def _seconds_until_next(self) -> Optional[float]:
        """Arm the next tick. Returns None when the schedule never fires again."""
        if self.config.schedule_interval_seconds:
            delay = float(self.config.schedule_interval_seconds)
            self._next_fire_time = datetime.utcnow() + timedelta(seconds=delay)
            return delay

        now = datetime.now(self._cron.timezone)
        start = now
        if self._last_fire_time and start <= self._last_fire_time:
            # Woke up early; never fire the same tick twice.
            start = self._last_fire_time + timedelta(seconds=1)
        self._next_fire_time = self._cron.get_next_fire_time(None, start)
        if self._next_fire_time is None:
            return None
        return max((self._next_fire_time - now).total_seconds(), 0.0)

    async def start(self) -> None:
        """
        Run the scheduling loop until ``stop`` is called.

        Failed runs are logged and the next tick is armed regardless.
        """
        self._looping = True
        self._stop_event = asyncio.Event()

        logger.info(
            "scheduler_started",
            cron=None if self.config.schedule_interval_seconds else self.config.schedule_cron,
            interval_seconds=self.config.schedule_interval_seconds,
            timezone=self.config.schedule_timezone,
        )

        try:
            while self._looping:
                delay = self._seconds_until_next()
                if delay is None:
                    logger.warning("schedule_exhausted", cron=self.config.schedule_cron)
                    break

                logger.debug(
                    "next_run_armed",
                    delay_seconds=round(delay, 1),
                    next_fire_time=self._next_fire_time.isoformat() if self._next_fire_time else None,
                )

                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

                if not self._looping:
                    break

                self._last_fire_time = self._next_fire_time
                run = await self.trigger("schedule")
                if run is not None and run.status == RunStatus.FAILED:
                    logger.info("scheduled_run_failed", error_type=run.error_type)

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled")
            raise
        finally:
            self._looping = False
            self._next_fire_time = None
            logger.info("scheduler_stopped")

    def stop(self) -> None:
        """
        Stop the scheduling loop.

        Suppresses the next scheduled trigger only; a run in flight
        completes normally.
        """
        self._looping = False
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("scheduler_stopping")

    def get_stats(self) -> dict:
        """Get scheduler statistics."""
        return {
            "state": self._state.value,
            "looping": self._looping,
            "next_fire_time": self._next_fire_time.isoformat() if self._next_fire_time else None,
            "runs_started": self._runs_started,
            "triggers_dropped": self._triggers_dropped,
            "last_run": self._last_run.to_dict() if self._last_run else None,
        }
