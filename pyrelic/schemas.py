"""Data contracts exchanged between metrics, the reporting loop and sinks.

Every model is frozen: a snapshot handed to a sink is a point-in-time value
and must not change while it is being encoded.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MetricKind(str, Enum):
    """The three built-in metric kinds."""

    GAUGE = "gauge"
    COUNTER = "counter"
    TIMER = "timer"


class TimerSummary(BaseModel):
    """Statistical summary of observed durations, in milliseconds."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    sum: float = Field(default=0.0, ge=0.0)
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    stddev: float = 0.0
    sum_of_squares: float = Field(default=0.0, ge=0.0)
    p50: float = 0.0
    p75: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    rate1: float = Field(default=0.0, ge=0.0, description="1-minute EWMA rate per second.")


class MetricValue(BaseModel):
    """One row of a registry snapshot."""

    model_config = ConfigDict(frozen=True)

    name: str
    unit: str
    kind: MetricKind
    value: float | TimerSummary


class ComponentSnapshot(BaseModel):
    """All metric values of a registry, tagged with its identity."""

    model_config = ConfigDict(frozen=True)

    name: str
    guid: str
    duration: int = Field(ge=0, description="Seconds covered by this report.")
    metrics: tuple[MetricValue, ...] = ()


class AgentInfo(BaseModel):
    """Identifies the reporting process to the remote platform."""

    model_config = ConfigDict(frozen=True)

    host: str
    pid: int
    version: str


class PlatformReport(BaseModel):
    """A single delivery handed to a reporting sink."""

    model_config = ConfigDict(frozen=True)

    agent: AgentInfo
    components: tuple[ComponentSnapshot, ...]
