"""Agent composition root wiring pollers, the HTTP timer and reporting."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from typing import Any

from .config import AgentConfig
from .errors import ConfigurationError, SamplingError
from .instrumentation import ASGIApp, HandlerFunc, HTTPInstrumentor, TimerCell
from .metrics import Timer
from .pollers import Poller, gc_poller, memory_poller, runtime_metrics
from .registry import MetricRegistry
from .reporting import ReportingLoop
from .schemas import AgentInfo
from .sink import NewRelicSink, ReportingSink

logger = logging.getLogger(__name__)

HTTP_TIMER_NAME = "http/responseTime"
STARTUP_TIMEOUT = 5.0


class Agent:
    """Samples interpreter health and ships it to a reporting sink.

    Construct with defaults, adjust ``config``, then call ``run()``. All
    interval-driven work happens on a daemon thread with its own event loop,
    so the host keeps serving requests in parallel. The agent lives for the
    rest of the process; ``shutdown()`` exists for tests and embedders that
    want a clean stop.
    """

    def __init__(self, config: AgentConfig | None = None, sink: ReportingSink | None = None) -> None:
        self.config = config or AgentConfig()
        self.sink = sink
        self.http_timer_cell = TimerCell()
        self.registry: MetricRegistry | None = None
        self.pollers: list[Poller] = []
        self.reporting: ReportingLoop | None = None
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None
        self._started = threading.Event()
        self._lock = threading.Lock()

    @property
    def http_timer(self) -> Timer | None:
        return self.http_timer_cell.timer

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        """Validate config, build the metric graph and start background work.

        Returns as soon as the background tasks are scheduled. Raises
        ConfigurationError before anything starts when the config is invalid.
        """
        with self._lock:
            if self._thread is not None:
                raise RuntimeError("Agent is already running")
            self._validate()

            registry = MetricRegistry(self.config.name, self.config.guid)
            for metric in runtime_metrics():
                registry.add(metric)

            pollers: list[Poller] = []
            if self.config.collect_gc_stat:
                poller = self._build_poller(gc_poller, self.config.gc_poll_interval)
                if poller is not None:
                    pollers.append(poller)
                    self.debug(
                        "Init GC metrics collection. Poll interval %s seconds.",
                        self.config.gc_poll_interval,
                    )
            if self.config.collect_memory_stat:
                poller = self._build_poller(memory_poller, self.config.memory_poll_interval)
                if poller is not None:
                    pollers.append(poller)
                    self.debug(
                        "Init memory allocator metrics collection. Poll interval %s seconds.",
                        self.config.memory_poll_interval,
                    )
            for poller in pollers:
                for metric in poller.metrics:
                    registry.add(metric)

            timer: Timer | None = None
            if self.config.collect_http_stat:
                timer = Timer(HTTP_TIMER_NAME)
                registry.add(timer)
                self.debug("Init HTTP metrics collection.")
            registry.seal()

            if self.sink is None:
                self.sink = NewRelicSink(
                    license_key=self.config.license,
                    endpoint=self.config.endpoint,
                    timeout=self.config.delivery_timeout,
                )
            self.reporting = ReportingLoop(
                registries=[registry],
                sink=self.sink,
                interval=self.config.poll_interval,
                agent_info=AgentInfo(
                    host=socket.gethostname(),
                    pid=os.getpid(),
                    version=self.config.version,
                ),
                verbose=self.config.verbose,
            )
            self.registry = registry
            self.pollers = pollers
            self.http_timer_cell.timer = timer

            self._thread = threading.Thread(target=self._serve, name="pyrelic-agent", daemon=True)
            self._thread.start()
            thread = self._thread
        deadline = time.monotonic() + STARTUP_TIMEOUT
        while not self._started.wait(timeout=0.05):
            if not thread.is_alive():
                raise RuntimeError("Agent thread exited before background tasks started")
            if time.monotonic() > deadline:
                raise RuntimeError(
                    f"Agent background tasks did not start within {STARTUP_TIMEOUT} seconds"
                )

    def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel background tasks, close the sink and join the agent thread."""
        thread = self._thread
        if thread is None:
            return
        loop, stop = self._loop, self._stop
        if loop is not None and stop is not None:
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(stop.set)
        thread.join(timeout)
        for poller in self.pollers:
            poller.close()

    def wrap_http_handler(self, app: ASGIApp) -> ASGIApp:
        """Time every request served by an ASGI application."""
        return self._instrumentor().wrap(app)

    def wrap_http_handler_func(self, fn: HandlerFunc) -> HandlerFunc:
        """Time every call of a request-handling function."""
        return self._instrumentor().wrap_func(fn)

    def debug(self, msg: str, *args: Any) -> None:
        if self.config.verbose:
            logger.info(msg, *args)

    def _instrumentor(self) -> HTTPInstrumentor:
        return HTTPInstrumentor(self.http_timer_cell, enabled=self.config.collect_http_stat)

    def _validate(self) -> None:
        if not self.config.license or not self.config.license.strip():
            raise ConfigurationError("Please, pass a valid New Relic license key.")
        intervals = {"poll_interval": self.config.poll_interval}
        if self.config.collect_gc_stat:
            intervals["gc_poll_interval"] = self.config.gc_poll_interval
        if self.config.collect_memory_stat:
            intervals["memory_poll_interval"] = self.config.memory_poll_interval
        for label, value in intervals.items():
            if value <= 0:
                raise ConfigurationError(f"{label} must be positive, got {value!r}")

    def _build_poller(self, factory: Callable[[float], Poller], interval: float) -> Poller | None:
        try:
            return factory(interval)
        except SamplingError as exc:
            logger.warning("Skipping %s metrics collection: %s", factory.__name__, exc)
            return None

    def _serve(self) -> None:
        try:
            asyncio.run(self._main())
        except Exception:  # noqa: BLE001 - surfaced to run() through the dead thread
            logger.exception("Agent background loop crashed")

    async def _main(self) -> None:
        assert self.reporting is not None and self.sink is not None
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        tasks = [
            asyncio.create_task(poller.run(), name=f"pyrelic-poller-{poller.name}")
            for poller in self.pollers
        ]
        tasks.append(asyncio.create_task(self.reporting.run(), name="pyrelic-reporting"))
        self._started.set()
        self.debug(
            "Agent %s started with %d poller(s), reporting every %s seconds",
            self.config.name,
            len(self.pollers),
            self.config.poll_interval,
        )
        try:
            await self._stop.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.sink.aclose()
