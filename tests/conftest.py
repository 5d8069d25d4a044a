"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FORMAT", "plain")

import pytest


class FakeClock:
    """Deterministic millisecond clock for limiter tests."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms

    def set(self, ms: float) -> None:
        self.now = ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
