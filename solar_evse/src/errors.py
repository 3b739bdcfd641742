"""
Exception hierarchy for the solar surplus EVSE controller.

Fatal errors (configuration, meter, exhausted retries, protocol) propagate out
of the control loop and stop the daemon. InvalidSample and
TelemetryParseError are handled where they occur.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations


class SolarEvseError(Exception):
    """Base class for all daemon errors."""


class ConfigurationError(SolarEvseError):
    """The site does not look the way the daemon expects (e.g. no net meter)."""


class MeterError(SolarEvseError):
    """The Envoy could not be reached or returned an unusable HTTP response."""


class InvalidSample(SolarEvseError):
    """A pair of meter readings cannot produce a surplus estimate."""


class TelemetryParseError(SolarEvseError):
    """A published telemetry payload is not a decimal number."""


class ClientError(SolarEvseError):
    """Base class for charger (RAPI) client errors."""


class TransportError(ClientError):
    """The charger could not be reached or the connection broke mid-request."""


class RetriesExhausted(TransportError):
    """Every attempt of a RAPI request failed at the transport level.

    Args:
        command: The RAPI mnemonic that was being sent.
        attempts: How many attempts were made.
    """

    def __init__(self, command: str, attempts: int) -> None:
        super().__init__(
            f"RAPI command ${command} failed after {attempts} attempt(s)"
        )
        self.command = command
        self.attempts = attempts


class ProtocolError(ClientError):
    """The charger answered, but the answer is malformed or not $OK."""
