"""Tests for the reclaim sweep and its background scheduler."""

import logging
import threading

import pytest

from admission_api.adapters.rate_limit.reclaim import ReclaimScheduler
from admission_api.adapters.rate_limit.sliding_window import SlidingWindowRateLimiter


class TestSweep:
    """Sweep semantics driven by a fake clock."""

    def test_removes_keys_older_than_two_windows(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            max_requests=5, window_ms=1000, clock=clock, auto_start=False
        )
        clock.set(0)
        limiter.consume("idle")
        clock.set(1500)
        limiter.consume("active")

        clock.set(2100)
        removed = limiter.sweep()

        assert removed == 1
        assert limiter.tracked_keys() == 1
        assert limiter.log_length("idle") == 0
        assert limiter.log_length("active") == 1

    def test_keeps_key_with_history_inside_retention(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            max_requests=5, window_ms=1000, clock=clock, auto_start=False
        )
        # record() appends without sliding the window, so t=0 stays in the log
        clock.set(0)
        limiter.record("k")
        clock.set(1200)
        limiter.record("k")

        # t=0 is outside the window but inside the two-window retention
        clock.set(1900)
        assert limiter.sweep() == 0
        assert limiter.log_length("k") == 2

        clock.set(2500)
        assert limiter.sweep() == 0
        assert limiter.log_length("k") == 1

    def test_retained_timestamps_are_within_two_windows(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            max_requests=100, window_ms=1000, clock=clock, auto_start=False
        )
        for t in range(0, 3000, 250):
            clock.set(t)
            limiter.record("k")

        clock.set(3000)
        limiter.sweep()

        # Survivors: t > 1000
        assert limiter.log_length("k") == len(range(1250, 3000, 250))

    def test_request_after_sweep_starts_a_fresh_log(self, clock) -> None:
        limiter = SlidingWindowRateLimiter(
            max_requests=1, window_ms=1000, clock=clock, auto_start=False
        )
        limiter.consume("k")
        clock.advance(5000)
        limiter.sweep()

        assert limiter.tracked_keys() == 0
        assert limiter.consume("k").allowed is True
        assert limiter.consume("k").allowed is False


class TestReclaimScheduler:
    """Background thread behaviour with a tiny interval."""

    def test_fires_periodically(self) -> None:
        fired = threading.Event()
        calls: list[int] = []

        def _sweep() -> None:
            calls.append(1)
            if len(calls) >= 3:
                fired.set()

        scheduler = ReclaimScheduler(_sweep, interval_ms=5)
        scheduler.start()
        try:
            assert fired.wait(timeout=5)
        finally:
            scheduler.stop()

        assert scheduler.runs >= 3

    def test_no_firing_after_stop_returns(self) -> None:
        calls: list[int] = []
        scheduler = ReclaimScheduler(lambda: calls.append(1), interval_ms=5)
        scheduler.start()
        threading.Event().wait(0.05)

        scheduler.stop()
        seen = len(calls)
        threading.Event().wait(0.05)

        assert len(calls) == seen
        assert scheduler.running is False

    def test_stop_is_idempotent(self) -> None:
        scheduler = ReclaimScheduler(lambda: None, interval_ms=1000)

        scheduler.stop()
        scheduler.start()
        scheduler.stop()
        scheduler.stop()

        assert scheduler.running is False

    def test_start_twice_keeps_one_thread(self) -> None:
        scheduler = ReclaimScheduler(lambda: None, interval_ms=1000, name="reclaim-once")
        scheduler.start()
        scheduler.start()
        try:
            names = [t.name for t in threading.enumerate()]
            assert names.count("reclaim-once") == 1
        finally:
            scheduler.stop()

    def test_sweep_failure_is_logged_and_loop_continues(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        calls: list[int] = []
        done = threading.Event()

        def _flaky() -> None:
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            done.set()

        scheduler = ReclaimScheduler(_flaky, interval_ms=5)
        with caplog.at_level(logging.ERROR):
            scheduler.start()
            try:
                assert done.wait(timeout=5)
            finally:
                scheduler.stop()

        assert any(r.getMessage() == "rate_limit.sweep_failed" for r in caplog.records)

    def test_stop_from_inside_sweep_does_not_deadlock(self) -> None:
        stopped = threading.Event()
        scheduler: ReclaimScheduler

        def _sweep() -> None:
            scheduler.stop()
            stopped.set()

        scheduler = ReclaimScheduler(_sweep, interval_ms=5)
        scheduler.start()

        assert stopped.wait(timeout=5)
        scheduler.stop()

    @pytest.mark.parametrize("interval", [0, -1, 2.5])
    def test_invalid_interval(self, interval) -> None:
        with pytest.raises(ValueError):
            ReclaimScheduler(lambda: None, interval_ms=interval)


def test_limiter_scheduler_reclaims_idle_keys(clock) -> None:
    limiter = SlidingWindowRateLimiter(
        max_requests=5, window_ms=10, clock=clock, sweep_interval_ms=5
    )
    limiter.consume("k")
    clock.advance(100)

    reclaimed = threading.Event()

    def _poll() -> None:
        while limiter.tracked_keys():
            threading.Event().wait(0.005)
        reclaimed.set()

    poller = threading.Thread(target=_poll, daemon=True)
    poller.start()
    try:
        assert reclaimed.wait(timeout=5)
    finally:
        limiter.stop()
