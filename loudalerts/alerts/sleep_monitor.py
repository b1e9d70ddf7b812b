"""Detect system sleep and wall-clock jumps from inside the event loop.

The loop's timers run on the monotonic clock, which stops while the machine
is suspended. Comparing how far the wall clock moved against how far the
monotonic clock moved between two ticks exposes both a suspend/resume cycle
and a large clock step (NTP correction, manual change).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable

from .config import WakeConfig

LOGGER = logging.getLogger("loudalerts.sleep_monitor")

WakeCallback = Callable[[float], Awaitable[None]]


def _wall_clock() -> float:
    return time.time()


def _monotonic() -> float:
    return time.monotonic()


class SleepMonitor:
    def __init__(
        self,
        *,
        config: WakeConfig,
        on_wake: WakeCallback,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_wake = on_wake
        self._logger = logger or LOGGER
        self._runner: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._last_wall: float | None = None
        self._last_mono: float | None = None

    async def start(self) -> None:
        if self._runner:
            return
        self._stop_event.clear()
        self.reset()
        self._runner = asyncio.create_task(self._run_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        runner = self._runner
        self._runner = None
        if runner:
            runner.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await runner

    def reset(self) -> None:
        self._last_wall = _wall_clock()
        self._last_mono = _monotonic()

    def check(self) -> float | None:
        """Sample both clocks; return the detected gap in seconds, if any."""
        wall = _wall_clock()
        mono = _monotonic()
        last_wall, last_mono = self._last_wall, self._last_mono
        self._last_wall, self._last_mono = wall, mono
        if last_wall is None or last_mono is None:
            return None
        drift = (wall - last_wall) - (mono - last_mono)
        if abs(drift) < self._config.threshold_seconds:
            return None
        return drift

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._config.check_seconds)
                return
            except TimeoutError:
                pass
            gap = self.check()
            if gap is None:
                continue
            self._logger.info("Wall clock jumped %.0f seconds past the monotonic clock; treating as wake", gap)
            try:
                await self._on_wake(gap)
            except Exception:  # pylint: disable=broad-except
                self._logger.exception("Wake handler failed")
