from __future__ import annotations

import asyncio
import time
from typing import Optional

from api.triggers.dispatcher import TriggerDispatcher
from shared.config import config
from shared.logger import get_logger

logger = get_logger(__name__)


class TriggerDispatcherService:
    """
    Background loop that ticks the trigger dispatcher on a fixed cadence.

    With ``align_to_clock`` ticks land on wall-clock multiples of the
    interval (:00 and :30 for 30 seconds), so minute-granular cron instants
    coincide with a tick.
    """

    def __init__(
        self,
        *,
        dispatcher: Optional[TriggerDispatcher] = None,
        interval_seconds: Optional[float] = None,
        align_to_clock: bool = True,
    ) -> None:
        self.dispatcher = dispatcher or TriggerDispatcher()
        self.interval_seconds = interval_seconds or config.trigger_dispatcher_interval_seconds
        self.align_to_clock = align_to_clock
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Trigger dispatcher started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        logger.info("Trigger dispatcher stopped")

    def _seconds_until_next_tick(self) -> float:
        if not self.align_to_clock:
            return self.interval_seconds
        return self.interval_seconds - (time.time() % self.interval_seconds)

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.dispatcher.tick()
            except Exception:
                logger.exception("Trigger dispatcher tick failed")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._seconds_until_next_tick())
            except asyncio.TimeoutError:
                continue


__all__ = ["TriggerDispatcherService"]
