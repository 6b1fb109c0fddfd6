"""Error taxonomy shared by the agent, its pollers and the reporting sink."""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for every error raised by pyrelic."""


class ConfigurationError(TelemetryError):
    """Invalid agent setup, such as a missing license or a duplicate metric."""


class DeliveryError(TelemetryError):
    """The reporting sink rejected a report or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SamplingError(TelemetryError):
    """A runtime introspection primitive is unavailable on this platform."""
