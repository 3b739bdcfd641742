"""
Pure surplus estimator: two meter readings in, export current out.

With a previous reading, the average net power over the interval is derived
from the lifetime energy counter, which smooths out the sub-second noise that
``wNow`` carries. Without one (first cycle) the instantaneous power is used.

This is a pure function: no side effects, no I/O, no clock.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

from solar_evse.src.errors import InvalidSample
from solar_evse.src.models import MeterReading

_SECONDS_PER_HOUR = 3600.0


def elapsed_seconds(previous: MeterReading, current: MeterReading) -> int:
    """Whole seconds between two readings (the Envoy has 1 s resolution)."""
    return int((current.reading_time - previous.reading_time).total_seconds())


def estimate(previous: MeterReading | None, current: MeterReading) -> float:
    """Estimate the current being exported to the grid, in amps.

    Args:
        previous: The prior reading, or None on the first cycle.
        current: The reading just taken.

    Returns:
        Export current in amps. Positive means surplus is being exported,
        negative means the site is importing.

    Raises:
        InvalidSample: If the readings are not strictly increasing in time,
            or the reported voltage is not positive.
    """
    if current.rms_voltage <= 0:
        raise InvalidSample(f"Non-positive RMS voltage: {current.rms_voltage}")

    if previous is None:
        return -current.instantaneous_power_w / current.rms_voltage

    elapsed_s = elapsed_seconds(previous, current)
    if elapsed_s <= 0:
        raise InvalidSample(
            f"Readings are not increasing in time (elapsed {elapsed_s}s)"
        )

    delta_wh = current.cumulative_energy_wh - previous.cumulative_energy_wh
    avg_power_w = delta_wh * _SECONDS_PER_HOUR / elapsed_s
    avg_current = avg_power_w / current.rms_voltage
    return -avg_current
