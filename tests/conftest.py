from __future__ import annotations

import threading

import pytest

from pyrelic import AgentInfo, DeliveryError, PlatformReport, ReportingSink


class RecordingSink(ReportingSink):
    """Keeps every delivered report in memory."""

    def __init__(self, fail_first: int = 0) -> None:
        self.reports: list[PlatformReport] = []
        self.attempts = 0
        self.closed = False
        self._fail_first = fail_first
        self._lock = threading.Lock()

    async def deliver(self, report: PlatformReport) -> None:
        with self._lock:
            self.attempts += 1
            if self.attempts <= self._fail_first:
                raise DeliveryError("upstream unavailable", status_code=503)
            self.reports.append(report)

    async def aclose(self) -> None:
        self.closed = True

    def snapshot(self) -> list[PlatformReport]:
        with self._lock:
            return list(self.reports)


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def agent_info() -> AgentInfo:
    return AgentInfo(host="test-host", pid=4242, version="0.1.0")


@pytest.fixture
def flaky_sink() -> RecordingSink:
    return RecordingSink(fail_first=2)
