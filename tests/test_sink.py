from __future__ import annotations

import json

import httpx
import pytest

from pyrelic import (
    AgentInfo,
    ComponentSnapshot,
    DeliveryError,
    MetricKind,
    MetricValue,
    NewRelicSink,
    PlatformReport,
    Timer,
    TimerSummary,
)
from pyrelic.sink import encode_metrics

ENDPOINT = "https://platform.example.test/platform/v1/metrics"


def _report(agent_info: AgentInfo) -> PlatformReport:
    return PlatformReport(
        agent=agent_info,
        components=(
            ComponentSnapshot(
                name="Python daemon",
                guid="com.github.pyrelic.PyRelic",
                duration=60,
                metrics=(
                    MetricValue(
                        name="Runtime/GC/NumberOfGCCalls",
                        unit="calls",
                        kind=MetricKind.GAUGE,
                        value=12.0,
                    ),
                    MetricValue(
                        name="http/responseTime",
                        unit="ms",
                        kind=MetricKind.TIMER,
                        value=TimerSummary(
                            count=4, sum=40.0, min=5.0, max=20.0, mean=10.0,
                            sum_of_squares=550.0, stddev=5.0, p50=8.0, p75=12.5,
                            p95=20.0, p99=20.0, rate1=0.5,
                        ),
                    ),
                ),
            ),
        ),
    )


@pytest.mark.asyncio
async def test_deliver_posts_plugin_payload(agent_info: AgentInfo) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"status": "ok"})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sink = NewRelicSink("secret-license", endpoint=ENDPOINT, http_client=client)
    await sink.deliver(_report(agent_info))
    await client.aclose()

    [request] = captured
    assert str(request.url) == ENDPOINT
    assert request.headers["X-License-Key"] == "secret-license"
    body = json.loads(request.content)
    assert body["agent"] == {"host": "test-host", "pid": 4242, "version": "0.1.0"}
    [component] = body["components"]
    assert component["name"] == "Python daemon"
    assert component["guid"] == "com.github.pyrelic.PyRelic"
    assert component["duration"] == 60
    metrics = component["metrics"]
    assert metrics["Component/Runtime/GC/NumberOfGCCalls[calls]"] == 12.0
    assert metrics["Component/http/responseTime[ms]"] == {
        "min": 5.0,
        "max": 20.0,
        "total": 40.0,
        "count": 4,
        "sum_of_squares": 550.0,
    }
    assert metrics["Component/http/responseTime/requests[calls]"] == 4
    assert metrics["Component/http/responseTime/throughput/1minute[rps]"] == 0.5
    assert metrics["Component/http/responseTime/average[ms]"] == 10.0
    assert metrics["Component/http/responseTime/stddev[ms]"] == 5.0
    assert metrics["Component/http/responseTime/percentile50[ms]"] == 8.0
    assert metrics["Component/http/responseTime/percentile75[ms]"] == 12.5
    assert metrics["Component/http/responseTime/percentile95[ms]"] == 20.0
    assert metrics["Component/http/responseTime/percentile99[ms]"] == 20.0


@pytest.mark.asyncio
async def test_rejected_report_raises_delivery_error(agent_info: AgentInfo) -> None:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(403, text="bad license"))
    )
    sink = NewRelicSink("wrong", endpoint=ENDPOINT, http_client=client)

    with pytest.raises(DeliveryError) as excinfo:
        await sink.deliver(_report(agent_info))
    await client.aclose()

    assert excinfo.value.status_code == 403
    assert "bad license" in str(excinfo.value)


@pytest.mark.asyncio
async def test_unreachable_endpoint_raises_delivery_error(agent_info: AgentInfo) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    sink = NewRelicSink("secret", endpoint=ENDPOINT, http_client=client)

    with pytest.raises(DeliveryError) as excinfo:
        await sink.deliver(_report(agent_info))
    await client.aclose()

    assert excinfo.value.status_code is None


@pytest.mark.asyncio
async def test_owned_client_is_closed() -> None:
    sink = NewRelicSink("secret")
    client = sink._client()
    await sink.aclose()
    assert client.is_closed


def test_idle_timer_omits_summary_object() -> None:
    encoded = encode_metrics(
        [MetricValue(name="http/responseTime", unit="ms", kind=MetricKind.TIMER, value=TimerSummary(count=0))]
    )
    assert "Component/http/responseTime[ms]" not in encoded
    assert encoded["Component/http/responseTime/requests[calls]"] == 0


def test_observed_timer_encodes_every_statistic() -> None:
    timer = Timer("http/responseTime")
    for seconds in (0.010, 0.020, 0.030, 0.040):
        timer.observe(seconds)

    encoded = encode_metrics(
        [MetricValue(name=timer.name, unit=timer.unit, kind=timer.kind, value=timer.snapshot())]
    )

    prefix = "Component/http/responseTime"
    assert encoded[f"{prefix}/average[ms]"] == pytest.approx(25.0)
    for label in ("percentile50", "percentile75", "percentile95", "percentile99"):
        assert f"{prefix}/{label}[ms]" in encoded
    assert encoded[f"{prefix}/percentile50[ms]"] <= encoded[f"{prefix}/percentile99[ms]"]
    assert encoded[f"{prefix}/stddev[ms]"] > 0
