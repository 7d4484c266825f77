"""
cadence.worker.ticker — Recurring Scheduler Tick
=================================================

Drives :func:`cadence.services.scheduler_service.run_tick` on a fixed
interval (≈60 s).  The ticker holds no idempotency state of its own.
At-most-once per bucket is enforced by the ``blocks`` unique key, so
several worker processes may tick the same database safely.

Within one process, a schedule whose job from the previous tick is still
running (a slow generator call) is left out of the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from cadence.services.scheduler_service import JobOptions, TickResult, run_tick

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from cadence.services.text_generator import TextGenerator

logger = logging.getLogger(__name__)


class ScheduleTicker:
    """Background loop calling :func:`run_tick` every *interval* seconds."""

    def __init__(
        self,
        engine: Engine,
        generator: TextGenerator | None,
        *,
        interval: float = 60.0,
        options: JobOptions | None = None,
        concurrency: int = 4,
    ) -> None:
        self.engine = engine
        self.generator = generator
        self.interval = interval
        self.options = options or JobOptions()
        self.concurrency = concurrency
        self._task: asyncio.Task | None = None
        self._inflight: set[int] = set()
        self._tick_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick_once(self, now: datetime | None = None) -> TickResult:
        """Run a single tick, skipping schedules still busy from the last one."""
        return await run_tick(
            self.engine,
            self.generator,
            now or datetime.now(UTC),
            options=self.options,
            concurrency=self.concurrency,
            inflight=self._inflight,
        )

    async def _guarded_tick(self) -> None:
        try:
            result = await self.tick_once()
        except Exception:
            logger.exception("Scheduler tick failed", extra={"task": "scheduler_tick"})
            return
        logger.debug("Tick checked %d schedules", result.checked)

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the background tick loop."""
        if self._task is not None:
            return

        async def _tick_loop() -> None:
            while True:
                tick = loop.create_task(self._guarded_tick(), name="scheduler-tick")
                self._tick_tasks.add(tick)
                tick.add_done_callback(self._tick_tasks.discard)
                await asyncio.sleep(self.interval)

        self._task = loop.create_task(_tick_loop(), name="scheduler-ticker")
        logger.info("Scheduler ticker started (every %ss)", self.interval)

    def stop(self) -> None:
        """Cancel the tick loop and any tick still running."""
        if self._task:
            self._task.cancel()
            self._task = None
        for tick in list(self._tick_tasks):
            tick.cancel()
