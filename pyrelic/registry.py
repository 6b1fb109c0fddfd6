"""Passive container grouping metrics under one reported component."""

from __future__ import annotations

import threading
from collections.abc import Iterator

from .errors import ConfigurationError
from .metrics import Metric
from .schemas import MetricValue


class MetricRegistry:
    """Insertion-ordered set of uniquely named metrics.

    The registry never mutates metric state; pollers and instrumentors do.
    Composition is frozen by ``seal()`` once the agent is running.
    """

    def __init__(self, name: str, guid: str) -> None:
        self.name = name
        self.guid = guid
        self._metrics: dict[str, Metric] = {}
        self._sealed = False
        self._lock = threading.Lock()

    def add(self, metric: Metric) -> Metric:
        """Register ``metric``; duplicate names are a configuration error."""
        with self._lock:
            if self._sealed:
                raise ConfigurationError(
                    f"Registry {self.name!r} is sealed; cannot add metric {metric.name!r}"
                )
            if metric.name in self._metrics:
                raise ConfigurationError(
                    f"Metric {metric.name!r} is already registered in {self.name!r}"
                )
            self._metrics[metric.name] = metric
        return metric

    def seal(self) -> None:
        with self._lock:
            self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def get(self, name: str) -> Metric | None:
        return self._metrics.get(name)

    def snapshot(self) -> list[MetricValue]:
        """Read every metric, in registration order, without touching I/O."""
        with self._lock:
            metrics = list(self._metrics.values())
        return [
            MetricValue(
                name=metric.name,
                unit=metric.unit,
                kind=metric.kind,
                value=metric.snapshot(),
            )
            for metric in metrics
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._metrics

    def __iter__(self) -> Iterator[Metric]:
        return iter(list(self._metrics.values()))

    def __len__(self) -> int:
        return len(self._metrics)
