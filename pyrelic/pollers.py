"""Background pollers sampling interpreter health into metrics.

Each poller runs on its own fixed interval. Sampling calls are bounded but
not free: walking the gc object list or reading allocator counters holds the
interpreter lock, so other threads are paused while it happens. Intervals are
a trade-off between freshness and that pause; defaults are conservative.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import os
import sys
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import psutil

from .errors import SamplingError
from .metrics import Counter, FunctionGauge, Gauge, Metric, percentile

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Poller:
    """Invokes ``sample`` every ``interval`` seconds until cancelled."""

    name: str
    interval: float
    sample: Callable[[], None]
    metrics: list[Metric] = field(default_factory=list)
    samples: int = field(init=False, default=0)

    async def run(self) -> None:
        """Sample on a fixed-rate schedule; the first sample is one interval in."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(next_tick - loop.time(), 0.0))
            try:
                self.sample()
            except Exception:  # noqa: BLE001 - keep polling on the next tick
                logger.exception("Poller %s failed to sample", self.name)
            else:
                self.samples += 1
            next_tick += self.interval
            now = loop.time()
            if next_tick < now:
                # fell behind (suspended process); skip missed ticks
                next_tick = now + self.interval

    def close(self) -> None:
        closer = getattr(self.sample, "close", None)
        if closer is not None:
            closer()


class GCPauseRecorder:
    """Times every collection through ``gc.callbacks``.

    Collections never overlap, so a single start timestamp is enough.
    """

    def __init__(self, maxlen: int = 4096) -> None:
        self._pauses: deque[float] = deque(maxlen=maxlen)
        self._started: float | None = None
        self._total = 0.0

    def __call__(self, phase: str, info: dict[str, Any]) -> None:
        if phase == "start":
            self._started = time.perf_counter()
        elif phase == "stop" and self._started is not None:
            pause = time.perf_counter() - self._started
            self._started = None
            self._total += pause
            self._pauses.append(pause)

    @property
    def total(self) -> float:
        """Cumulative pause time in seconds since installation."""
        return self._total

    def install(self) -> None:
        if self not in gc.callbacks:
            gc.callbacks.append(self)

    def uninstall(self) -> None:
        if self in gc.callbacks:
            gc.callbacks.remove(self)

    def drain(self) -> list[float]:
        """Return and forget the pauses recorded since the previous drain."""
        drained: list[float] = []
        while True:
            try:
                drained.append(self._pauses.popleft())
            except IndexError:
                return drained


class GCStatsSampler:
    """Writes collector statistics and recent pause times into gauges.

    Every figure counts from the moment the sampler is created, the same
    baseline the pause recorder has, so call counts and pause totals line up.
    """

    def __init__(self, recorder: GCPauseRecorder | None = None) -> None:
        if not hasattr(gc, "get_stats") or not hasattr(gc, "callbacks"):
            raise SamplingError("gc statistics are not available on this interpreter")
        self.recorder = recorder or GCPauseRecorder()
        self.calls = Gauge("Runtime/GC/NumberOfGCCalls", "calls")
        self.pause_total = Gauge("Runtime/GC/PauseTotalTime", "ms")
        self.pause_max = Gauge("Runtime/GC/GCTime/Max", "ms")
        self.pause_min = Gauge("Runtime/GC/GCTime/Min", "ms")
        self.pause_mean = Gauge("Runtime/GC/GCTime/Mean", "ms")
        self.pause_p95 = Gauge("Runtime/GC/GCTime/Percentile95", "ms")
        self.collected = Counter("Runtime/GC/Collected", "objects")
        self.uncollectable = Counter("Runtime/GC/Uncollectable", "objects")
        self.recorder.install()
        self._baseline = _gc_totals()

    @property
    def metrics(self) -> list[Metric]:
        return [
            self.calls,
            self.pause_total,
            self.pause_max,
            self.pause_min,
            self.pause_mean,
            self.pause_p95,
            self.collected,
            self.uncollectable,
        ]

    def __call__(self) -> None:
        calls, collected, uncollectable = (
            now - then for now, then in zip(_gc_totals(), self._baseline)
        )
        self.calls.update(calls)
        self.collected.update(collected)
        self.uncollectable.update(uncollectable)
        self.pause_total.update(self.recorder.total * 1000.0)

        pauses = sorted(p * 1000.0 for p in self.recorder.drain())
        if pauses:
            self.pause_max.update(pauses[-1])
            self.pause_min.update(pauses[0])
            self.pause_mean.update(sum(pauses) / len(pauses))
            self.pause_p95.update(percentile(pauses, 0.95))
        else:
            for gauge in (self.pause_max, self.pause_min, self.pause_mean, self.pause_p95):
                gauge.update(0.0)

    def close(self) -> None:
        self.recorder.uninstall()


def _gc_totals() -> tuple[int, int, int]:
    generations = gc.get_stats()
    return (
        sum(g["collections"] for g in generations),
        sum(g["collected"] for g in generations),
        sum(g["uncollectable"] for g in generations),
    )


class MemoryStatsSampler:
    """Writes process and allocator memory figures into gauges."""

    def __init__(self, process: psutil.Process | None = None) -> None:
        try:
            self._process = process or psutil.Process(os.getpid())
            self._process.memory_info()
        except psutil.Error as exc:
            raise SamplingError(f"process memory statistics are unavailable: {exc}") from exc
        self.resident = Gauge("Runtime/Memory/InUse/Resident", "bytes")
        self.virtual = Gauge("Runtime/Memory/InUse/Virtual", "bytes")
        self.tracked_objects = Gauge("Runtime/Memory/TrackedObjects", "objects")
        self.allocated_blocks: Gauge | None = None
        if hasattr(sys, "getallocatedblocks"):
            self.allocated_blocks = Gauge("Runtime/Memory/AllocatedBlocks", "blocks")

    @property
    def metrics(self) -> list[Metric]:
        metrics: list[Metric] = [self.resident, self.virtual, self.tracked_objects]
        if self.allocated_blocks is not None:
            metrics.append(self.allocated_blocks)
        return metrics

    def __call__(self) -> None:
        info = self._process.memory_info()
        self.resident.update(info.rss)
        self.virtual.update(info.vms)
        self.tracked_objects.update(len(gc.get_objects()))
        if self.allocated_blocks is not None:
            self.allocated_blocks.update(sys.getallocatedblocks())


def gc_poller(interval: float) -> Poller:
    """Build the GC statistics poller; raises SamplingError when unsupported."""
    sampler = GCStatsSampler()
    return Poller(name="gc", interval=interval, sample=sampler, metrics=sampler.metrics)


def memory_poller(interval: float) -> Poller:
    """Build the memory statistics poller; raises SamplingError when unsupported."""
    sampler = MemoryStatsSampler()
    return Poller(name="memory", interval=interval, sample=sampler, metrics=sampler.metrics)


def runtime_metrics(started_at: float | None = None) -> list[Metric]:
    """Always-on gauges computed on read from in-memory interpreter state."""
    origin = time.monotonic() if started_at is None else started_at
    return [
        FunctionGauge("Runtime/General/Uptime", "seconds", lambda: time.monotonic() - origin),
        FunctionGauge("Runtime/General/Threads", "threads", threading.active_count),
        FunctionGauge("Runtime/GC/PendingObjects", "objects", lambda: gc.get_count()[0]),
    ]
