"""
Health file writer for the controller daemon.

Writes a JSON health file at a configurable path after every completed
control cycle:
- last_cycle_ts: ISO timestamp of the most recent completed cycle.
- charge_limit_amps: Charge limit decided in that cycle.
- decision: ``"charging"`` or ``"sleeping"``.
- export_current_amps: Estimated export current used for the decision.
- observed_charge_current_amps: Drawn current last reported over MQTT.

The file is overwritten on every cycle, providing a simple liveness signal
that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from solar_evse.src.models import ChargeDecision


class HealthWriter:
    """Writes controller health status to a JSON file.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_cycle_ts: str | None = None
        self._charge_limit_amps: float = 0.0
        self._decision: str | None = None
        self._export_current_amps: float | None = None
        self._observed_charge_current_amps: float = 0.0

    def record_cycle(
        self,
        *,
        charge_limit_amps: float,
        decision: ChargeDecision,
        export_current_amps: float,
        observed_charge_current_amps: float,
    ) -> None:
        """Record a completed control cycle and write health file."""
        self._last_cycle_ts = datetime.now(tz=UTC).isoformat()
        self._charge_limit_amps = charge_limit_amps
        self._decision = decision.value
        self._export_current_amps = export_current_amps
        self._observed_charge_current_amps = observed_charge_current_amps
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_cycle_ts": self._last_cycle_ts,
            "charge_limit_amps": self._charge_limit_amps,
            "decision": self._decision,
            "export_current_amps": self._export_current_amps,
            "observed_charge_current_amps": self._observed_charge_current_amps,
        }
        self.path.write_text(json.dumps(data))
