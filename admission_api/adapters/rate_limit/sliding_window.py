"""In-memory sliding-window-log rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Exact log: a request counts while its timestamp is strictly newer than
  ``now - window_ms``. No bucketing or approximation.
- Thread-safe: a store lock guards the key map and each RequestLog carries
  its own lock, so unrelated clients are not serialized. Admission check and
  record happen under the key lock as a single step.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

from admission_api.adapters.rate_limit.base import (
    AbstractRateLimiter,
    KeyGenerator,
    RateLimitConfig,
    RateLimitResult,
    RequestLog,
)
from admission_api.adapters.rate_limit.fingerprint import resolve_key_extractor
from admission_api.adapters.rate_limit.reclaim import (
    DEFAULT_SWEEP_INTERVAL_MS,
    ReclaimScheduler,
)

logger = logging.getLogger(__name__)

# Retained history during a sweep, in multiples of the window.
RETENTION_WINDOWS = 2


def monotonic_ms() -> float:
    """Default clock: monotonic time in milliseconds."""
    return time.monotonic() * 1000


class SlidingWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter keeping a timestamp log per client key.

    Lifecycle is explicit: constructing a limiter starts nothing. The reclaim
    scheduler starts on ``start()`` or, with ``auto_start`` enabled, on the
    first ``consume()``. ``stop()`` must be called to release the thread and
    the stored state; it is idempotent and disables admission until the next
    ``start()``. The limiter is also a context manager.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_ms: int,
        key_generator: KeyGenerator | None = None,
        sweep_interval_ms: int = DEFAULT_SWEEP_INTERVAL_MS,
        clock: Callable[[], float] = monotonic_ms,
        auto_start: bool = True,
        name: str = "rate-limit",
    ) -> None:
        """Initialize the limiter.

        Args:
            max_requests: Maximum admitted requests per window.
            window_ms: Window length in milliseconds.
            key_generator: Optional custom key extractor or callable.
            sweep_interval_ms: Period of the reclaim sweep in milliseconds.
            clock: Time source returning milliseconds; must be non-decreasing.
            auto_start: Start the reclaim scheduler on the first consume().
            name: Label used in logs and for the scheduler thread.

        Raises:
            ValueError: If the numeric settings are invalid.
        """
        self._config = RateLimitConfig(
            max_requests=max_requests,
            window_ms=window_ms,
            key_generator=key_generator,
        )
        self._key_extractor = resolve_key_extractor(key_generator)
        self._clock = clock
        self._auto_start = auto_start
        self._name = name
        self._lock = threading.Lock()
        # Serializes start, stop and auto-start so none of them interleave.
        self._lifecycle_lock = threading.Lock()
        self._logs: dict[str, RequestLog] = {}
        self._scheduler = ReclaimScheduler(
            self.sweep,
            interval_ms=sweep_interval_ms,
            name=f"{name}-reclaim",
        )
        self._stopped = False

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"SlidingWindowRateLimiter(name={self._name!r}, "
            f"max_requests={self._config.max_requests}, window_ms={self._config.window_ms}, "
            f"keys={len(self._logs)})"
        )

    def __enter__(self) -> SlidingWindowRateLimiter:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._name

    @property
    def scheduler(self) -> ReclaimScheduler:
        return self._scheduler

    # Lifecycle

    def start(self) -> None:
        """Start (or restart) the reclaim scheduler."""
        with self._lifecycle_lock:
            with self._lock:
                self._stopped = False
            self._scheduler.start()

    def stop(self) -> None:
        """Stop the reclaim scheduler and drop all stored state.

        Once stopped, admission calls raise ``RuntimeError`` until ``start()``
        is called again, so no state accumulates without a sweep to reclaim it.
        """
        with self._lifecycle_lock:
            with self._lock:
                self._stopped = True
            self._scheduler.stop()
            with self._lock:
                for log in self._logs.values():
                    log.evicted = True
                self._logs.clear()

    destroy = stop

    # Admission

    def extract_key(self, request: Any) -> str:
        return self._key_extractor.extract(request)

    def is_admitted(self, key: str) -> bool:
        """Slide the window for ``key`` and report whether it is under the limit."""
        with self._locked_log(key) as log:
            return self._check_locked(log, self._clock())

    def record(self, key: str) -> None:
        """Record a request for ``key`` unless it is currently blocked.

        Denied attempts are not logged, so a flood of rejected requests
        neither grows the log nor extends the block.
        """
        with self._locked_log(key) as log:
            if not log.blocked:
                log.timestamps.append(self._clock())

    def consume(self, key: str) -> RateLimitResult:
        """Check and record ``key`` as one atomic step.

        Args:
            key: Client fingerprint.

        Returns:
            RateLimitResult with the admission decision.

        Raises:
            ValueError: If key is empty.
            RuntimeError: If the limiter has been stopped.
        """
        if self._auto_start:
            self._ensure_started()

        config = self._config
        with self._locked_log(key) as log:
            now = self._clock()
            allowed = self._check_locked(log, now)
            if allowed:
                log.timestamps.append(now)
            used = len(log.timestamps)

        if allowed:
            return RateLimitResult(
                allowed=True,
                limit=config.max_requests,
                remaining=max(0, config.max_requests - used),
                window_ms=config.window_ms,
                retry_after_seconds=None,
            )

        return RateLimitResult(
            allowed=False,
            limit=config.max_requests,
            remaining=0,
            window_ms=config.window_ms,
            retry_after_seconds=config.retry_after_seconds,
        )

    def _check_locked(self, log: RequestLog, now: float) -> bool:
        log.prune(now - self._config.window_ms)
        log.blocked = len(log.timestamps) >= self._config.max_requests
        return not log.blocked

    # Reclaim

    def sweep(self) -> int:
        """Drop history older than two windows and forget idle keys.

        Returns:
            Number of keys removed from the store.
        """
        cutoff = self._clock() - RETENTION_WINDOWS * self._config.window_ms
        with self._lock:
            snapshot = list(self._logs.items())

        removed = 0
        for key, log in snapshot:
            with log.lock:
                if log.evicted:
                    continue
                log.prune(cutoff)
                if log.timestamps:
                    continue
                with self._lock:
                    if self._logs.get(key) is log:
                        del self._logs[key]
                        removed += 1
                log.evicted = True

        logger.debug(
            "rate_limit.sweep",
            extra={
                "limiter": self._name,
                "keys_scanned": len(snapshot),
                "keys_removed": removed,
                "keys_remaining": self.tracked_keys(),
            },
        )
        return removed

    # Introspection

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._logs)

    def log_length(self, key: str) -> int:
        """Number of stored timestamps for ``key`` (0 when untracked)."""
        with self._lock:
            log = self._logs.get(key)
        if log is None:
            return 0
        with log.lock:
            return len(log.timestamps)

    def is_blocked(self, key: str) -> bool:
        with self._lock:
            log = self._logs.get(key)
        return bool(log and log.blocked)

    def stats(self) -> dict[str, int | str | bool]:
        """Return lightweight limiter metrics without exposing keys."""
        return {
            "name": self._name,
            "max_requests": self._config.max_requests,
            "window_ms": self._config.window_ms,
            "sweep_interval_ms": self._scheduler.interval_ms,
            "tracked_keys": self.tracked_keys(),
            "scheduler_running": self._scheduler.running,
        }

    # Internals

    def _ensure_started(self) -> None:
        if self._scheduler.running:
            return
        with self._lifecycle_lock:
            if not self._stopped and not self._scheduler.running:
                self._scheduler.start()

    @contextmanager
    def _locked_log(self, key: str) -> Iterator[RequestLog]:
        if not key:
            raise ValueError("key must be a non-empty string")

        while True:
            with self._lock:
                if self._stopped:
                    raise RuntimeError(f"rate limiter {self._name!r} is stopped")
                log = self._logs.get(key)
                if log is None:
                    log = RequestLog()
                    self._logs[key] = log
            log.lock.acquire()
            if not log.evicted:
                break
            # Swept between lookup and lock; retry against a fresh entry.
            log.lock.release()

        try:
            yield log
        finally:
            log.lock.release()
