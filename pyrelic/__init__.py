"""pyrelic: in-process runtime telemetry agent."""

from .agent import HTTP_TIMER_NAME, Agent
from .config import AgentConfig
from .errors import ConfigurationError, DeliveryError, SamplingError, TelemetryError
from .instrumentation import HTTPInstrumentor, InstrumentedASGIApp, TimerCell
from .metrics import Counter, FunctionGauge, Gauge, Metric, Timer
from .pollers import Poller
from .registry import MetricRegistry
from .reporting import ReportingLoop
from .schemas import (
    AgentInfo,
    ComponentSnapshot,
    MetricKind,
    MetricValue,
    PlatformReport,
    TimerSummary,
)
from .sink import NewRelicSink, ReportingSink

__all__ = [
    "HTTP_TIMER_NAME",
    "Agent",
    "AgentConfig",
    "AgentInfo",
    "ComponentSnapshot",
    "ConfigurationError",
    "Counter",
    "DeliveryError",
    "FunctionGauge",
    "Gauge",
    "HTTPInstrumentor",
    "InstrumentedASGIApp",
    "Metric",
    "MetricKind",
    "MetricRegistry",
    "MetricValue",
    "NewRelicSink",
    "PlatformReport",
    "Poller",
    "ReportingLoop",
    "ReportingSink",
    "SamplingError",
    "TelemetryError",
    "Timer",
    "TimerCell",
    "TimerSummary",
]
