"""Fixed-cadence trigger for the simulation scheduler.

The scheduler never schedules itself; this runner calls ``run_tick()`` every
``interval`` seconds from a daemon thread. ``stop()`` signals the loop and
waits, so a tick that is mid-write finishes instead of being cut off.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from milesconnect.config import settings
from milesconnect.modules.simulation_scheduler import SimulationScheduler, TickFailedError

logger = logging.getLogger(__name__)


class SimulationRunner:
    def __init__(self, scheduler: SimulationScheduler, interval: float | None = None):
        self.scheduler = scheduler
        self.interval = interval or settings.SIMULATION_TICK_SECONDS
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.ticks_run = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="simulation-runner", daemon=True)
        self._thread.start()
        logger.info("Simulation runner started (every %.1fs)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Simulation runner stopped after %d ticks", self.ticks_run)

    def run(self, max_ticks: int | None = None) -> None:
        """Tick until stopped (or ``max_ticks`` reached), keeping a fixed cadence."""
        while not self._stop.is_set():
            started = time.monotonic()
            try:
                self.scheduler.run_tick()
            except TickFailedError as e:
                logger.warning("Simulation tick failed, retrying next period: %s", e)
            self.ticks_run += 1
            if max_ticks is not None and self.ticks_run >= max_ticks:
                break
            elapsed = time.monotonic() - started
            self._stop.wait(max(self.interval - elapsed, 0.0))
