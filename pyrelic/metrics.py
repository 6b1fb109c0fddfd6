"""In-memory metric kinds: gauges, counters and timers.

All metrics are pull based. Writers (pollers, the HTTP instrumentor, host
code) mutate state through ``update``/``inc``/``observe`` and the reporting
loop reads it through ``snapshot``. Reading never resets state.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Protocol, runtime_checkable

from .schemas import MetricKind, TimerSummary

RESERVOIR_SIZE = 1028
PERCENTILES = (0.5, 0.75, 0.95, 0.99)

logger = logging.getLogger(__name__)


@runtime_checkable
class Metric(Protocol):
    """Capability implemented by every metric kind."""

    name: str
    unit: str
    kind: MetricKind

    def snapshot(self) -> float | TimerSummary:
        ...


class Gauge:
    """Holds the latest observed value."""

    kind = MetricKind.GAUGE

    def __init__(self, name: str, unit: str, value: float = 0.0) -> None:
        self.name = name
        self.unit = unit
        self._value = float(value)
        self._lock = threading.Lock()

    def update(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def snapshot(self) -> float:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Gauge({self.name!r}, {self.unit!r})"


class FunctionGauge:
    """Gauge whose value is computed by ``fn`` on every snapshot.

    ``fn`` must only read in-memory state; it runs on the reporting path.
    """

    kind = MetricKind.GAUGE

    def __init__(self, name: str, unit: str, fn: Callable[[], float]) -> None:
        self.name = name
        self.unit = unit
        self._fn = fn

    def snapshot(self) -> float:
        return float(self._fn())

    def __repr__(self) -> str:
        return f"FunctionGauge({self.name!r}, {self.unit!r})"


class Counter:
    """Holds a value that is adjusted by increments."""

    kind = MetricKind.COUNTER

    def __init__(self, name: str, unit: str) -> None:
        self.name = name
        self.unit = unit
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self, by: float = 1) -> None:
        with self._lock:
            self._value += by

    def update(self, value: float) -> None:
        """Set the counter to an externally maintained total."""
        with self._lock:
            self._value = float(value)

    def snapshot(self) -> float:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"Counter({self.name!r}, {self.unit!r})"


class _EWMA:
    """Exponentially weighted moving rate, ticked lazily every 5 seconds.

    Not thread safe; the owning timer serialises access.
    """

    TICK_INTERVAL = 5.0

    def __init__(self, window: float, clock: Callable[[], float]) -> None:
        self._alpha = 1.0 - math.exp(-self.TICK_INTERVAL / window)
        self._clock = clock
        self._last_tick = clock()
        self._uncounted = 0
        self._rate = 0.0
        self._initialized = False

    def mark(self, n: int = 1) -> None:
        self._tick()
        self._uncounted += n

    def rate(self) -> float:
        self._tick()
        return self._rate

    def _tick(self) -> None:
        ticks = int((self._clock() - self._last_tick) // self.TICK_INTERVAL)
        if ticks <= 0:
            return
        self._last_tick += ticks * self.TICK_INTERVAL
        instant = self._uncounted / self.TICK_INTERVAL
        self._uncounted = 0
        if self._initialized:
            self._rate += self._alpha * (instant - self._rate)
        else:
            self._rate = instant
            self._initialized = True
        if ticks > 1:
            # idle ticks decay the rate towards zero
            self._rate *= (1.0 - self._alpha) ** (ticks - 1)


class Timer:
    """Accumulates a statistical summary of observed durations.

    Durations are observed in seconds and summarised in milliseconds. Count,
    sum, min and max are exact; percentiles come from a uniform reservoir
    sample. The lock only covers the constant-time accumulator update, so
    many request handlers can observe concurrently.
    """

    kind = MetricKind.TIMER

    def __init__(
        self,
        name: str,
        unit: str = "ms",
        reservoir_size: int = RESERVOIR_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.unit = unit
        self._lock = threading.Lock()
        self._reservoir_size = reservoir_size
        self._reservoir: list[float] = []
        self._random = random.Random()
        self._count = 0
        self._sum = 0.0
        self._sum_sq = 0.0
        self._min = math.inf
        self._max = -math.inf
        self._rate = _EWMA(60.0, clock)

    def observe(self, seconds: float) -> None:
        value = float(seconds)
        if not math.isfinite(value):
            logger.warning("Timer %s ignored non-finite duration %r", self.name, value)
            return
        value = max(value, 0.0)
        with self._lock:
            self._count += 1
            self._sum += value
            self._sum_sq += value * value
            if value < self._min:
                self._min = value
            if value > self._max:
                self._max = value
            if len(self._reservoir) < self._reservoir_size:
                self._reservoir.append(value)
            else:
                slot = self._random.randrange(self._count)
                if slot < self._reservoir_size:
                    self._reservoir[slot] = value
            self._rate.mark()

    @contextmanager
    def timed(self) -> Iterator[None]:
        """Observe the wall time spent inside the ``with`` block."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(time.perf_counter() - start)

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def snapshot(self) -> TimerSummary:
        with self._lock:
            count = self._count
            total = self._sum
            total_sq = self._sum_sq
            low, high = self._min, self._max
            sample = list(self._reservoir)
            rate1 = self._rate.rate()
        if count == 0:
            return TimerSummary(count=0, rate1=rate1)

        mean = total / count
        variance = max(total_sq / count - mean * mean, 0.0)
        sample.sort()
        p50, p75, p95, p99 = (percentile(sample, p) * 1000.0 for p in PERCENTILES)
        return TimerSummary(
            count=count,
            sum=total * 1000.0,
            min=low * 1000.0,
            max=high * 1000.0,
            mean=mean * 1000.0,
            stddev=math.sqrt(variance) * 1000.0,
            sum_of_squares=total_sq * 1_000_000.0,
            p50=p50,
            p75=p75,
            p95=p95,
            p99=p99,
            rate1=rate1,
        )

    def __repr__(self) -> str:
        return f"Timer({self.name!r}, {self.unit!r})"


def percentile(ordered: list[float], p: float) -> float:
    if not ordered:
        return 0.0
    pos = p * (len(ordered) + 1)
    if pos < 1.0:
        return ordered[0]
    if pos >= len(ordered):
        return ordered[-1]
    lower = ordered[int(pos) - 1]
    upper = ordered[int(pos)]
    return lower + (pos - math.floor(pos)) * (upper - lower)
