"""
Polling Scheduler
=================

Fires one sub-indexer tick every interval.

Each tick runs as its own asyncio task so a slow tick never delays the
timer. If the previous tick is still running when the timer fires, the
new tick is skipped with a warning; ticks of the same task never overlap.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from pob_indexer.models.responses import TaskStatus

logger = logging.getLogger(__name__)


class PollingTask:
    def __init__(
        self,
        name: str,
        tick_fn: Callable[[], Awaitable],
        interval_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.tick_fn = tick_fn
        self.interval_seconds = interval_seconds
        self.clock = clock

        self.in_flight = False
        self.ticks_completed = 0
        self.ticks_failed = 0
        self.ticks_skipped = 0
        self.last_tick_started_at: Optional[float] = None
        self.last_tick_duration_seconds: Optional[float] = None
        self._current: Optional[asyncio.Task] = None

    async def tick(self) -> bool:
        """
        Run one tick unless one is already in flight.

        Returns:
            False if the tick was skipped
        """
        if self.in_flight:
            self.ticks_skipped += 1
            logger.warning(f"⏭️  {self.name}: previous tick still running, skipping")
            return False

        self.in_flight = True
        started = self.clock()
        self.last_tick_started_at = started
        try:
            await self.tick_fn()
            self.ticks_completed += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.ticks_failed += 1
            logger.error(f"❌ {self.name}: tick failed: {e}", exc_info=True)
        finally:
            self.in_flight = False
            self.last_tick_duration_seconds = self.clock() - started
        return True

    async def run_forever(self):
        """Timer loop; cancel it to stop (the running tick is cancelled too)"""
        logger.info(f"🔄 {self.name}: polling every {self.interval_seconds}s")
        try:
            while True:
                if self.in_flight:
                    await self.tick()
                else:
                    self._current = asyncio.create_task(self.tick())
                await asyncio.sleep(self.interval_seconds)
        finally:
            if self._current is not None and not self._current.done():
                self._current.cancel()

    def status(self) -> TaskStatus:
        return TaskStatus(
            name=self.name,
            interval_seconds=self.interval_seconds,
            in_flight=self.in_flight,
            ticks_completed=self.ticks_completed,
            ticks_failed=self.ticks_failed,
            ticks_skipped=self.ticks_skipped,
            last_tick_started_at=self.last_tick_started_at,
            last_tick_duration_seconds=self.last_tick_duration_seconds,
        )
