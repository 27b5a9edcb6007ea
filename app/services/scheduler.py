from __future__ import annotations

import threading
from collections.abc import Callable

from loguru import logger


class PeriodicJob:
    """Run ``func`` every ``interval`` seconds on a daemon thread until stopped."""

    def __init__(self, name: str, interval: float, func: Callable[[], object], *, run_immediately: bool = True) -> None:
        self.name = name
        self.interval = max(float(interval), 1.0)
        self._func = func
        self._run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Started job {} (every {}s)", self.name, self.interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Stopped job {}", self.name)

    def run_once(self) -> None:
        try:
            self._func()
        except Exception as exc:
            logger.exception("Job {} failed: {}", self.name, exc)

    def _loop(self) -> None:
        if self._run_immediately:
            self.run_once()
        while not self._stop.wait(self.interval):
            self.run_once()


__all__ = ["PeriodicJob"]
