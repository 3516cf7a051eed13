from __future__ import annotations

import asyncio
import signal
from typing import Awaitable, Callable, Optional, Set

from loguru import logger

from crypto_watcher.config import cron_expression, interval_seconds


def install_signal_handlers(stop: asyncio.Event) -> None:
    """Convert SIGINT / SIGTERM into stop.set() without breaking Windows."""
    loop = asyncio.get_running_loop()

    def _handler():
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handler)
        except (NotImplementedError, RuntimeError):
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(_handler))


class Scheduler:
    """Fire *task* every *interval* until stopped.

    Each firing runs as its own asyncio task so a slow tick does not delay
    the schedule; overlap is left to the task itself to refuse.
    """

    def __init__(self, interval: str, task: Callable[[], Awaitable[None]]) -> None:
        self.interval = interval
        self.seconds = interval_seconds(interval)
        self.cron = cron_expression(interval)
        self.task = task
        self._inflight: Set[asyncio.Task] = set()

    def fire(self) -> asyncio.Task:
        t = asyncio.create_task(self._guarded())
        self._inflight.add(t)
        t.add_done_callback(self._inflight.discard)
        return t

    async def _guarded(self) -> None:
        try:
            await self.task()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled task failed")

    async def run(self, stop: asyncio.Event, max_runs: Optional[int] = None) -> None:
        logger.info(f"Scheduler running every {self.seconds}s (cron: {self.cron})")
        fired = 0
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.seconds)
                break
            except asyncio.TimeoutError:
                pass
            self.fire()
            fired += 1
            if max_runs is not None and fired >= max_runs:
                await asyncio.gather(*self._inflight, return_exceptions=True)
                return
        await self.shutdown()

    async def shutdown(self) -> None:
        """Cancel in-flight ticks; a cancelled fetch never reaches history."""
        for t in list(self._inflight):
            t.cancel()
        await asyncio.gather(*self._inflight, return_exceptions=True)
        self._inflight.clear()
