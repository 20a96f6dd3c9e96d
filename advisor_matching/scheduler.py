"""
Periodic loops for the engine's background cycles.

Each ScheduledLoop fires its job every ``interval_seconds``. A tick starts
the job as its own task so a slow run never delays the schedule, and a
tick that arrives while the previous run is still in flight is skipped.
Failures are logged at the loop boundary; after ``alert_after``
consecutive failures an alert goes out through config.alerting.

``sleep`` is injectable so tests can drive loops on virtual time.

Usage:
    scheduler = EngineScheduler(engine)
    scheduler.start()
    ...
    await scheduler.stop()
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from asgiref.sync import sync_to_async

from config.alerting import send_alert
from config.logging_filters import new_correlation_id

from .conf import get_engine_config
from .exceptions import EngineError

logger = logging.getLogger(__name__)

HOUR = 60 * 60


class ScheduledLoop:

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        job: Callable[[], Awaitable[Any]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        alert_after: int = 3,
        alert: Callable[..., None] = send_alert,
    ):
        if interval_seconds <= 0:
            raise ValueError(f"{name}: interval must be positive")
        self.name = name
        self.interval_seconds = interval_seconds
        self.job = job
        self.sleep = sleep
        self.alert_after = alert_after
        self.alert = alert

        self.in_flight = False
        self.runs = 0
        self.skipped = 0
        self.consecutive_failures = 0
        self.last_result: Any = None
        self._task: Optional[asyncio.Task] = None
        self._current: Optional[asyncio.Task] = None

    @property
    def is_started(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, run_immediately: bool = False) -> None:
        if self.is_started:
            return
        self._task = asyncio.create_task(self._loop(run_immediately), name=f"loop:{self.name}")
        logger.info(f"Started {self.name} loop (every {self.interval_seconds / HOUR:g}h)")

    async def stop(self) -> None:
        for task in (self._task, self._current):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._current = None
        self.in_flight = False
        logger.info(f"Stopped {self.name} loop")

    def tick(self) -> Optional[asyncio.Task]:
        """Start a run unless one is already in flight."""
        if self.in_flight:
            self.skipped += 1
            logger.warning(f"{self.name} cycle still running; skipping this tick")
            return None
        self.in_flight = True
        self._current = asyncio.create_task(self.run_once(), name=f"run:{self.name}")
        return self._current

    async def run_once(self) -> Any:
        """Run the job at the loop boundary: never raises, counts failures."""
        self.in_flight = True
        cid = new_correlation_id(self.name)
        try:
            result = await self.job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.consecutive_failures += 1
            logger.exception(f"{self.name} cycle failed ({self.consecutive_failures} in a row)")
            if self.consecutive_failures >= self.alert_after:
                await sync_to_async(self.alert)(
                    "critical",
                    f"{self.name} cycle failing",
                    f"last error: {e}",
                    source=f"{self.name}-loop",
                    context={
                        'consecutive_failures': self.consecutive_failures,
                        'interval_seconds': self.interval_seconds,
                    },
                    correlation_id=cid,
                )
            return None
        else:
            self.runs += 1
            self.consecutive_failures = 0
            self.last_result = result
            return result
        finally:
            self.in_flight = False

    async def _loop(self, run_immediately: bool) -> None:
        if run_immediately:
            self.tick()
        while True:
            await self.sleep(self.interval_seconds)
            self.tick()

    def status(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'interval_hours': self.interval_seconds / HOUR,
            'started': self.is_started,
            'in_flight': self.in_flight,
            'runs': self.runs,
            'skipped': self.skipped,
            'consecutive_failures': self.consecutive_failures,
        }


class EngineScheduler:
    """The four engine loops: learning, performance, optimization and market."""

    def __init__(self, engine, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 config: Optional[dict] = None):
        self.engine = engine
        self.config = config or get_engine_config()
        alert_after = self.config['alert_after_failures']

        def loop(name, hours_key, job):
            return ScheduledLoop(
                name, self.config[hours_key] * HOUR, job, sleep=sleep, alert_after=alert_after
            )

        self.loops: Dict[str, ScheduledLoop] = {
            'learning': loop('learning', 'learning_interval_hours', self._learning_job),
            'performance': loop('performance', 'performance_interval_hours', engine.run_performance_batch),
            'optimization': loop('optimization', 'optimization_interval_hours', engine.run_optimization_batch),
            'market': loop('market', 'market_interval_hours', engine.refresh_market_intelligence),
        }

    async def _learning_job(self):
        report = await self.engine.run_learning_cycle()
        if report.status == 'failed':
            raise EngineError(report.error or 'learning cycle failed')
        return report

    def start(self, run_immediately: bool = False) -> None:
        for item in self.loops.values():
            item.start(run_immediately=run_immediately)

    async def stop(self) -> None:
        for item in self.loops.values():
            await item.stop()

    async def run_once(self) -> Dict[str, Any]:
        """Run every cycle once, in order, and return each result."""
        return {name: await item.run_once() for name, item in self.loops.items()}

    def status(self) -> Dict[str, Dict[str, Any]]:
        return {name: item.status() for name, item in self.loops.items()}
