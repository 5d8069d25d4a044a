"""Background reclaim of stale rate limit state.

The scheduler runs a sweep callback on a fixed period from a daemon thread.
Construction is inert; ``start()`` arms the thread and ``stop()`` disarms it.
Once ``stop()`` returns, the callback will not fire again.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_INTERVAL_MS = 60_000


class ReclaimScheduler:
    """Recurring sweep runner.

    Attributes:
        interval_ms: Delay between sweeps in milliseconds.
        name: Thread name, useful when several limiters run side by side.
    """

    def __init__(
        self,
        sweep: Callable[[], object],
        *,
        interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS,
        name: str = "rate-limit-reclaim",
    ) -> None:
        if isinstance(interval_ms, bool) or not isinstance(interval_ms, int) or interval_ms < 1:
            raise ValueError("interval_ms must be an integer >= 1")

        self.interval_ms = interval_ms
        self.name = name
        self._sweep = sweep
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._runs = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    @property
    def runs(self) -> int:
        """Number of completed sweep firings."""
        return self._runs

    def start(self) -> None:
        """Start the sweep thread; no-op if it is already running."""

        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event,),
                name=self.name,
                daemon=True,
            )
            self._thread.start()

        logger.debug(
            "rate_limit.scheduler_started",
            extra={"scheduler": self.name, "interval_ms": self.interval_ms},
        )

    def stop(self) -> None:
        """Stop the sweep thread and wait for it to exit.

        Safe to call repeatedly and on a scheduler that never started.
        """

        with self._lock:
            thread = self._thread
            self._thread = None
            self._stop_event.set()

        if thread is None:
            return

        if thread is not threading.current_thread():
            thread.join()

        logger.debug("rate_limit.scheduler_stopped", extra={"scheduler": self.name})

    def _run(self, stop_event: threading.Event) -> None:
        interval_s = self.interval_ms / 1000
        # wait() returns True once stop() sets the event
        while not stop_event.wait(interval_s):
            try:
                self._sweep()
            except Exception as exc:
                logger.error(
                    "rate_limit.sweep_failed",
                    extra={
                        "scheduler": self.name,
                        "error_type": type(exc).__name__,
                        "error_msg": str(exc),
                    },
                )
            self._runs += 1
