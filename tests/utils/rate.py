from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from .types import RateResult

if TYPE_CHECKING:
    from collections.abc import Callable


async def measure_publish_rate(count_fn: Callable[[], int], window_s: float) -> RateResult:
    """
    Sample ``count_fn`` (messages published so far) before and after a window of
    ``window_s`` seconds. hz = messages published during the window / actual duration.
    """
    if window_s <= 0:
        raise ValueError("window_s must be > 0")
    loop = asyncio.get_running_loop()
    start = loop.time()
    before = count_fn()
    await asyncio.sleep(window_s)
    count = count_fn() - before
    duration = loop.time() - start
    hz = (count / duration) if duration > 0 else 0.0
    return RateResult(duration_s=duration, count=count, hz=hz)


def assert_min_hz(result: RateResult, min_hz: float, tolerance_hz: float = 0.0) -> None:
    """
    Assert that result.hz >= min_hz - tolerance_hz. Raises AssertionError with helpful diagnostics.
    """
    effective_min = max(0.0, min_hz - max(0.0, tolerance_hz))
    if result.hz < effective_min:
        raise AssertionError(
            f"Rate too low: {result.hz:.2f} Hz (min {min_hz:.2f} Hz, tolerance {tolerance_hz:.2f} Hz); "
            f"duration={result.duration_s:.3f}s, count={result.count}"
        )


def assert_max_hz(result: RateResult, max_hz: float, tolerance_hz: float = 0.0) -> None:
    """Assert that result.hz <= max_hz + tolerance_hz (ticks never bunch up)."""
    effective_max = max_hz + max(0.0, tolerance_hz)
    if result.hz > effective_max:
        raise AssertionError(
            f"Rate too high: {result.hz:.2f} Hz (max {max_hz:.2f} Hz, tolerance {tolerance_hz:.2f} Hz); "
            f"duration={result.duration_s:.3f}s, count={result.count}"
        )
