"""Request-handling wrappers that feed a shared HTTP latency timer.

Wrapped handlers behave exactly like the originals: same responses, same
status codes, same exceptions. Latency is recorded on every exit path,
including failures, and recording problems never reach the request.
"""

from __future__ import annotations

import functools
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, MutableMapping
from typing import Any, TypeVar

from .metrics import Timer

logger = logging.getLogger(__name__)

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]

HandlerFunc = TypeVar("HandlerFunc", bound=Callable[..., Any])


class TimerCell:
    """Indirection to the HTTP timer, filled in once the agent runs.

    Wrappers created before that point read an empty cell and record
    nothing; they start recording as soon as the timer is bound.
    """

    __slots__ = ("timer",)

    def __init__(self, timer: Timer | None = None) -> None:
        self.timer = timer


def _record(cell: TimerCell, started: float) -> None:
    try:
        timer = cell.timer
        if timer is not None:
            timer.observe(time.perf_counter() - started)
    except Exception:  # noqa: BLE001 - telemetry must not affect served traffic
        logger.exception("Failed to record HTTP request latency")


class InstrumentedASGIApp:
    """ASGI application timing every HTTP request handled by ``app``.

    Also usable as Starlette/FastAPI middleware:
    ``app.add_middleware(InstrumentedASGIApp, cell=agent.http_timer_cell)``.
    """

    def __init__(self, app: ASGIApp, cell: TimerCell) -> None:
        self.app = app
        self.cell = cell

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        started = time.perf_counter()
        try:
            await self.app(scope, receive, send)
        finally:
            _record(self.cell, started)


class HTTPInstrumentor:
    """Wraps handlers so their latency lands in the timer held by ``cell``."""

    def __init__(self, cell: TimerCell, enabled: bool = True) -> None:
        self.cell = cell
        self.enabled = enabled

    def wrap(self, app: ASGIApp) -> ASGIApp:
        """Wrap an ASGI application; a no-op when HTTP stats are disabled."""
        if not self.enabled:
            return app
        return InstrumentedASGIApp(app, self.cell)

    def wrap_func(self, fn: HandlerFunc) -> HandlerFunc:
        """Wrap a sync or async request-handling function.

        The signature is preserved so frameworks that inspect endpoint
        parameters (FastAPI, Starlette) treat the wrapper like the original.
        """
        if not self.enabled:
            return fn
        cell = self.cell

        if inspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def timed_async_handler(*args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                try:
                    return await fn(*args, **kwargs)
                finally:
                    _record(cell, started)

            return timed_async_handler  # type: ignore[return-value]

        @functools.wraps(fn)
        def timed_handler(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                return fn(*args, **kwargs)
            finally:
                _record(cell, started)

        return timed_handler  # type: ignore[return-value]
