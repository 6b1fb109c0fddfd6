"""Reporting sinks receiving periodic snapshots from the reporting loop."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

import httpx

from .config import NEWRELIC_ENDPOINT
from .errors import DeliveryError
from .schemas import MetricValue, PlatformReport, TimerSummary

logger = logging.getLogger(__name__)


class ReportingSink(ABC):
    """Abstract destination for platform reports."""

    @abstractmethod
    async def deliver(self, report: PlatformReport) -> None:
        """Push ``report`` upstream; raise DeliveryError on failure."""

    async def aclose(self) -> None:
        """Release network resources held by the sink."""
        return None


class NewRelicSink(ReportingSink):
    """Posts reports to the New Relic plugin API over HTTPS."""

    def __init__(
        self,
        license_key: str,
        endpoint: str = NEWRELIC_ENDPOINT,
        timeout: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.license_key = license_key
        self.endpoint = endpoint
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def deliver(self, report: PlatformReport) -> None:
        client = self._client()
        try:
            response = await client.post(
                self.endpoint,
                json=encode_report(report),
                headers={
                    "X-License-Key": self.license_key,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Could not reach {self.endpoint}: {exc}") from exc
        if response.is_error:
            raise DeliveryError(
                f"Report rejected with status {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        logger.debug("Delivered %d component(s) to %s", len(report.components), self.endpoint)

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        # created lazily so the client binds to the agent's own event loop
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client


def encode_report(report: PlatformReport) -> dict[str, Any]:
    """Encode a report into the plugin API JSON body."""
    return {
        "agent": {
            "host": report.agent.host,
            "pid": report.agent.pid,
            "version": report.agent.version,
        },
        "components": [
            {
                "name": component.name,
                "guid": component.guid,
                "duration": component.duration,
                "metrics": encode_metrics(component.metrics),
            }
            for component in report.components
        ],
    }


def encode_metrics(values: Iterable[MetricValue]) -> dict[str, Any]:
    """Map metric rows to ``Component/<name>[<unit>]`` keys.

    Timers expand into a summary object plus request count, 1-minute
    throughput, average, standard deviation and percentile scalars.
    """
    encoded: dict[str, Any] = {}
    for row in values:
        key = f"Component/{row.name}"
        if isinstance(row.value, TimerSummary):
            summary = row.value
            if summary.count:
                encoded[f"{key}[{row.unit}]"] = {
                    "min": summary.min,
                    "max": summary.max,
                    "total": summary.sum,
                    "count": summary.count,
                    "sum_of_squares": summary.sum_of_squares,
                }
            encoded[f"{key}/requests[calls]"] = summary.count
            encoded[f"{key}/throughput/1minute[rps]"] = summary.rate1
            encoded[f"{key}/average[{row.unit}]"] = summary.mean
            encoded[f"{key}/stddev[{row.unit}]"] = summary.stddev
            for label, value in (
                ("percentile50", summary.p50),
                ("percentile75", summary.p75),
                ("percentile95", summary.p95),
                ("percentile99", summary.p99),
            ):
                encoded[f"{key}/{label}[{row.unit}]"] = value
        else:
            encoded[f"{key}[{row.unit}]"] = row.value
    return encoded
