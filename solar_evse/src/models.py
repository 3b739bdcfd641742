"""
Data models for meter readings, controller state, telemetry and RAPI replies.

MeterReading and RapiResponse are Pydantic models because they are built from
JSON returned by the Envoy and the OpenEVSE. The state records owned by the
control task are plain dataclasses.

Sign convention: positive power/energy on a MeterReading is net import from
the grid; a positive export current is surplus available for local use.

CHANGELOG:
- 2026-10-17: Add LoopState and TelemetryUpdate for the control task (STORY-008)
- 2026-10-17: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class MeterReading(BaseModel):
    """A single net-consumption reading from the Envoy integrated meter.

    Attributes:
        reading_time: When the Envoy took the reading (second resolution).
        instantaneous_power_w: Instantaneous net power in watts.
            Positive = importing from the grid.
        cumulative_energy_wh: Lifetime net energy counter in watt-hours.
        rms_voltage: RMS line voltage in volts.
    """

    model_config = ConfigDict(frozen=True)

    reading_time: datetime
    instantaneous_power_w: float
    cumulative_energy_wh: float
    rms_voltage: float


class ChargeDecision(enum.Enum):
    """Whether the EVSE should be charging or asleep after a cycle."""

    CHARGING = "charging"
    SLEEPING = "sleeping"


@dataclass
class ControllerState:
    """Charge current setpoint carried across control cycles.

    Invariant: ``charge_limit_amps`` is 0 or within ``[min, max]``.
    """

    charge_limit_amps: float = 0.0


@dataclass
class TelemetryState:
    """What the charging station reports about itself over MQTT.

    Observational only; the controller never reads it.
    """

    observed_charge_current_amps: float = 0.0
    pilot_amps: float | None = None


@dataclass(frozen=True, slots=True)
class TelemetryUpdate:
    """A parsed telemetry message.

    Attributes:
        channel: ``"amp"`` (drawn current, mA) or ``"pilot"`` (limit, A).
        value: The parsed number, or None when the payload was malformed.
    """

    channel: str
    value: float | None


@dataclass
class LoopState:
    """Mutable state owned by the control task and threaded through cycles.

    Attributes:
        controller: The persisted charge current setpoint.
        previous_reading: The most recent meter reading, used as the baseline
            for the next surplus estimate.
        export_current_amps: Export current from the last decided cycle.
        decision: Decision from the last decided cycle.
    """

    controller: ControllerState = field(default_factory=ControllerState)
    previous_reading: MeterReading | None = None
    export_current_amps: float | None = None
    decision: ChargeDecision | None = None


class RapiResponse(BaseModel):
    """A decoded OpenEVSE RAPI reply.

    ``{"cmd": "$GE", "ret": "$OK 30 0121^21"}`` decodes to
    ``status="$OK"`` and ``values=["30", "0121"]``.

    Attributes:
        cmd: The command echoed back by the charger.
        status: The status token, ``$OK`` on success.
        values: Whitespace-separated tokens following the status token,
            with the trailing ``^xx`` checksum removed.
    """

    cmd: str
    status: str
    values: list[str]

    @property
    def ok(self) -> bool:
        """True when the charger accepted the command."""
        return self.status == "$OK"
