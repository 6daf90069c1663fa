"""Fixed-interval trigger for settlement scans."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


class ScanLock:
    """Process-local guard that lets at most one scan run at a time.

    Never persisted: a restarted process always starts unlocked.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def try_hold(self) -> Iterator[bool]:
        """Yield ``True`` while holding the lock, or ``False`` if another scan has it."""

        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


class ScanScheduler:
    """Run ``scan`` every ``interval`` seconds, skipping ticks that overlap a running scan.

    Each tick is dispatched on its own worker thread, so a slow scan never
    delays the timer: the next tick fires on schedule, sees the lock held and
    returns without doing anything.
    """

    def __init__(
        self,
        scan: Callable[[], T],
        interval: float,
        *,
        lock: ScanLock | None = None,
        run_on_start: bool = False,
        on_complete: Callable[[T], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._scan = scan
        self.interval = interval
        self.lock = lock or ScanLock()
        self._run_on_start = run_on_start
        self._on_complete = on_complete
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._counter_lock = threading.Lock()
        self.ticks = 0
        self.skipped = 0
        self.completed = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Begin ticking. Returns ``False`` when the scheduler was already running."""

        with self._state_lock:
            if self.running:
                logger.debug("Settlement scheduler already running")
                return False
            self._stop.clear()
            self._thread = threading.Thread(
                target=self._run, name="settlement-scheduler", daemon=True
            )
            self._thread.start()
        logger.info("Settlement scheduler started (interval={}s)", self.interval)
        return True

    def stop(self, timeout: float | None = None) -> None:
        with self._state_lock:
            thread = self._thread
            self._stop.set()
        if thread is not None:
            thread.join(timeout)
        logger.info("Settlement scheduler stopped")

    def _run(self) -> None:
        if self._run_on_start:
            self._dispatch()
        while not self._stop.wait(self.interval):
            self._dispatch()

    def _dispatch(self) -> None:
        worker = threading.Thread(target=self.tick, name="settlement-scan", daemon=True)
        worker.start()

    def _count(self, name: str) -> None:
        # Ticks run on their own worker threads.
        with self._counter_lock:
            setattr(self, name, getattr(self, name) + 1)

    def tick(self) -> T | None:
        """Run one scan unless another is still in flight."""

        self._count("ticks")
        with self.lock.try_hold() as acquired:
            if not acquired:
                self._count("skipped")
                logger.info("Settlement scan already in progress, skipping this tick")
                return None
            try:
                result = self._scan()
            except Exception:  # noqa: BLE001
                self._count("errors")
                logger.exception("Settlement scan failed")
                return None
            self._count("completed")

        if self._on_complete is not None:
            try:
                self._on_complete(result)
            except Exception:  # noqa: BLE001
                logger.exception("Settlement scan completion hook failed")
        return result
