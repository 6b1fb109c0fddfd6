from __future__ import annotations

import pytest

from pyrelic import AgentConfig, ConfigurationError
from pyrelic.config import AGENT_GUID, NEWRELIC_ENDPOINT


def test_from_env_reads_prefixed_variables() -> None:
    config = AgentConfig.from_env(
        {
            "PYRELIC_LICENSE": "abc123",
            "PYRELIC_NAME": "billing-api",
            "PYRELIC_POLL_INTERVAL": "30",
            "PYRELIC_VERBOSE": "true",
            "PYRELIC_COLLECT_MEMORY_STAT": "0",
            "PYRELIC_COLLECT_HTTP_STAT": "yes",
            "PYRELIC_GC_POLL_INTERVAL": "2.5",
        }
    )
    assert config.license == "abc123"
    assert config.name == "billing-api"
    assert config.poll_interval == 30.0
    assert config.verbose is True
    assert config.collect_gc_stat is True
    assert config.collect_memory_stat is False
    assert config.collect_http_stat is True
    assert config.gc_poll_interval == 2.5
    assert config.memory_poll_interval == 60.0


def test_from_env_falls_back_to_defaults(monkeypatch) -> None:
    for key in ("PYRELIC_LICENSE", "PYRELIC_VERBOSE", "PYRELIC_COLLECT_GC_STAT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("PYRELIC_COLLECT_GC_STAT", "  ")

    config = AgentConfig.from_env()
    assert config.license == ""
    assert config.verbose is False
    assert config.collect_gc_stat is True
    assert config.guid == AGENT_GUID
    assert config.endpoint == NEWRELIC_ENDPOINT


@pytest.mark.parametrize("key", ["PYRELIC_POLL_INTERVAL", "PYRELIC_GC_POLL_INTERVAL", "PYRELIC_DELIVERY_TIMEOUT"])
def test_from_env_rejects_non_numeric_values(key: str) -> None:
    with pytest.raises(ConfigurationError, match=key):
        AgentConfig.from_env({key: "abc"})
