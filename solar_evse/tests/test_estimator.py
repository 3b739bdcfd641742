"""
Unit tests for the surplus estimator.

Tests verify:
- First cycle uses instantaneous power (scenario: -500 W at 250 V -> 2.0 A).
- Subsequent cycles use the lifetime energy delta over elapsed time.
- Result depends only on energy delta, elapsed time and voltage.
- Zero or negative elapsed time and non-positive voltage raise InvalidSample.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-005)

TODO:
- None
"""

from __future__ import annotations

import pytest
from conftest import make_reading
from solar_evse.src.errors import InvalidSample
from solar_evse.src.estimator import elapsed_seconds, estimate


class TestFirstCycle:
    """Without a previous reading, instantaneous power is used."""

    def test_exporting_500w_at_250v(self) -> None:
        current = make_reading(power_w=-500.0, voltage=250.0)

        assert estimate(None, current) == pytest.approx(2.0)

    def test_importing_is_negative(self) -> None:
        current = make_reading(power_w=1200.0, voltage=240.0)

        assert estimate(None, current) == pytest.approx(-5.0)


class TestEnergyDelta:
    """With a previous reading, the average over the interval is used."""

    def test_small_import_over_an_hour(self) -> None:
        """5 Wh imported over 3600 s at 240 V is about -0.0208 A."""
        previous = make_reading(offset_s=0, energy_wh=1000.0)
        current = make_reading(offset_s=3600, energy_wh=1005.0, voltage=240.0)

        assert estimate(previous, current) == pytest.approx(-5.0 / 240.0)
        assert estimate(previous, current) == pytest.approx(-0.0208, abs=1e-4)

    def test_export_over_a_minute(self) -> None:
        """-10 Wh over 60 s is -600 W average, 2.5 A export at 240 V."""
        previous = make_reading(offset_s=0, energy_wh=5000.0)
        current = make_reading(offset_s=60, energy_wh=4990.0, voltage=240.0)

        assert estimate(previous, current) == pytest.approx(2.5)

    def test_instantaneous_power_ignored(self) -> None:
        """wNow does not influence the estimate once a baseline exists."""
        previous = make_reading(offset_s=0, energy_wh=100.0)
        quiet = make_reading(offset_s=60, energy_wh=101.0, power_w=0.0)
        noisy = make_reading(offset_s=60, energy_wh=101.0, power_w=-9999.0)

        assert estimate(previous, quiet) == estimate(previous, noisy)

    def test_independent_of_absolute_timestamps(self) -> None:
        """Shifting both readings in time does not change the estimate."""
        a = estimate(
            make_reading(offset_s=0, energy_wh=10.0),
            make_reading(offset_s=120, energy_wh=7.0),
        )
        b = estimate(
            make_reading(offset_s=86400, energy_wh=500.0),
            make_reading(offset_s=86520, energy_wh=497.0),
        )

        assert a == pytest.approx(b)

    def test_elapsed_seconds_whole(self) -> None:
        previous = make_reading(offset_s=0)
        current = make_reading(offset_s=61)

        assert elapsed_seconds(previous, current) == 61


class TestInvalidSamples:
    """Readings that cannot be compared raise InvalidSample."""

    def test_same_second_raises(self) -> None:
        previous = make_reading(offset_s=10, energy_wh=100.0)
        current = make_reading(offset_s=10, energy_wh=100.0)

        with pytest.raises(InvalidSample):
            estimate(previous, current)

    def test_time_going_backward_raises(self) -> None:
        previous = make_reading(offset_s=60)
        current = make_reading(offset_s=0)

        with pytest.raises(InvalidSample):
            estimate(previous, current)

    def test_zero_voltage_raises(self) -> None:
        with pytest.raises(InvalidSample):
            estimate(None, make_reading(power_w=-100.0, voltage=0.0))
