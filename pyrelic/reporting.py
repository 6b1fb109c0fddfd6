"""Periodic snapshot-and-deliver loop."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .errors import DeliveryError
from .registry import MetricRegistry
from .schemas import AgentInfo, ComponentSnapshot, PlatformReport
from .sink import ReportingSink

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReportingLoop:
    """Snapshots every registry on a fixed interval and hands it to the sink.

    The first report is sent one full interval after start so a cold process
    is never reported. A failed delivery is logged and skipped; the duration
    of the next report then covers the whole gap since the last success.
    """

    registries: list[MetricRegistry]
    sink: ReportingSink
    interval: float
    agent_info: AgentInfo
    verbose: bool = False
    clock: Callable[[], float] = time.monotonic
    reports: int = field(init=False, default=0)
    failures: int = field(init=False, default=0)
    _last_success: float = field(init=False, default=0.0)

    def __post_init__(self) -> None:
        self._last_success = self.clock()

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(next_tick - loop.time(), 0.0))
            await self.report_once()
            next_tick += self.interval
            now = loop.time()
            if next_tick < now:
                # a slow sink overran the next tick; realign instead of bursting
                next_tick = now + self.interval

    def build_report(self, now: float | None = None) -> PlatformReport:
        """Snapshot every registry into one report; performs no I/O."""
        now = self.clock() if now is None else now
        duration = max(int(round(now - self._last_success)), 0)
        return PlatformReport(
            agent=self.agent_info,
            components=tuple(
                ComponentSnapshot(
                    name=registry.name,
                    guid=registry.guid,
                    duration=duration,
                    metrics=tuple(registry.snapshot()),
                )
                for registry in self.registries
            ),
        )

    async def report_once(self) -> bool:
        """Run a single tick; returns whether the sink accepted the report."""
        now = self.clock()
        try:
            await self.sink.deliver(self.build_report(now))
        except DeliveryError as exc:
            self.failures += 1
            if self.verbose:
                logger.warning("Report delivery failed: %s", exc)
            else:
                logger.debug("Report delivery failed: %s", exc)
            return False
        except Exception:  # noqa: BLE001 - one bad tick must not stop reporting
            self.failures += 1
            logger.exception("Unexpected error while reporting metrics")
            return False
        self.reports += 1
        self._last_success = now
        if self.verbose:
            logger.info("Report %d delivered", self.reports)
        return True
