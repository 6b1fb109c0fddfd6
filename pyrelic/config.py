"""Configuration dataclass for the telemetry agent."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import ConfigurationError

# Send data to the platform every 60 seconds.
DEFAULT_POLL_INTERVAL = 60
# Sampling gc.get_stats() is cheap, but pause timing relies on gc callbacks
# that run inside every collection.
DEFAULT_GC_POLL_INTERVAL = 10
# Counting tracked objects walks the whole gc list while holding the
# interpreter lock, so be careful lowering this value.
DEFAULT_MEMORY_POLL_INTERVAL = 60

AGENT_GUID = "com.github.pyrelic.PyRelic"
AGENT_VERSION = "0.1.0"
AGENT_NAME = "Python daemon"
NEWRELIC_ENDPOINT = "https://platform-api.newrelic.com/platform/v1/metrics"


@dataclass(slots=True)
class AgentConfig:
    """Runtime configuration for an agent instance."""

    license: str = ""
    name: str = AGENT_NAME
    guid: str = AGENT_GUID
    version: str = AGENT_VERSION
    poll_interval: float = DEFAULT_POLL_INTERVAL
    verbose: bool = False
    collect_gc_stat: bool = True
    collect_memory_stat: bool = True
    collect_http_stat: bool = False
    gc_poll_interval: float = DEFAULT_GC_POLL_INTERVAL
    memory_poll_interval: float = DEFAULT_MEMORY_POLL_INTERVAL
    endpoint: str = NEWRELIC_ENDPOINT
    delivery_timeout: float = 20.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> AgentConfig:
        """Build a config from ``PYRELIC_*`` environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            license=env.get("PYRELIC_LICENSE", ""),
            name=env.get("PYRELIC_NAME", AGENT_NAME),
            guid=env.get("PYRELIC_GUID", AGENT_GUID),
            poll_interval=_number(env, "PYRELIC_POLL_INTERVAL", DEFAULT_POLL_INTERVAL),
            verbose=_flag(env.get("PYRELIC_VERBOSE"), False),
            collect_gc_stat=_flag(env.get("PYRELIC_COLLECT_GC_STAT"), True),
            collect_memory_stat=_flag(env.get("PYRELIC_COLLECT_MEMORY_STAT"), True),
            collect_http_stat=_flag(env.get("PYRELIC_COLLECT_HTTP_STAT"), False),
            gc_poll_interval=_number(env, "PYRELIC_GC_POLL_INTERVAL", DEFAULT_GC_POLL_INTERVAL),
            memory_poll_interval=_number(env, "PYRELIC_MEMORY_POLL_INTERVAL", DEFAULT_MEMORY_POLL_INTERVAL),
            endpoint=env.get("PYRELIC_ENDPOINT", NEWRELIC_ENDPOINT),
            delivery_timeout=_number(env, "PYRELIC_DELIVERY_TIMEOUT", 20.0),
        )


def _flag(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
