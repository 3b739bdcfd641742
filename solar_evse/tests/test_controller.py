"""
Unit tests for the integrating charge controller.

Tests verify:
- Limit integrates the export error (10 A + 3 A - 1 A target -> 12 A).
- Results below the minimum snap to 0 and put the EVSE to sleep.
- Clamp keeps every result within [0, max].
- No result ever lands strictly inside (0, min).
- Exporting exactly the target leaves the limit unchanged.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import pytest
from solar_evse.src.controller import clamp, update
from solar_evse.src.models import ChargeDecision

MIN_A = 6.0
MAX_A = 30.0


class TestUpdate:
    """update() integrates the export error into the limit."""

    def test_surplus_raises_limit(self) -> None:
        new_limit, decision = update(10.0, 3.0, 1.0, MIN_A, MAX_A)

        assert new_limit == pytest.approx(12.0)
        assert decision is ChargeDecision.CHARGING

    def test_below_min_snaps_to_zero(self) -> None:
        """4 A + 0 A - 1 A = 3 A, below the 6 A minimum."""
        new_limit, decision = update(4.0, 0.0, 1.0, MIN_A, MAX_A)

        assert new_limit == 0.0
        assert decision is ChargeDecision.SLEEPING

    def test_import_lowers_limit(self) -> None:
        new_limit, decision = update(16.0, -4.0, 1.0, MIN_A, MAX_A)

        assert new_limit == pytest.approx(11.0)
        assert decision is ChargeDecision.CHARGING

    def test_clamped_at_max(self) -> None:
        new_limit, decision = update(28.0, 20.0, 1.0, MIN_A, MAX_A)

        assert new_limit == MAX_A
        assert decision is ChargeDecision.CHARGING

    def test_exactly_min_charges(self) -> None:
        new_limit, decision = update(0.0, 7.0, 1.0, MIN_A, MAX_A)

        assert new_limit == pytest.approx(MIN_A)
        assert decision is ChargeDecision.CHARGING

    def test_heavy_import_clamps_to_zero(self) -> None:
        new_limit, decision = update(10.0, -50.0, 1.0, MIN_A, MAX_A)

        assert new_limit == 0.0
        assert decision is ChargeDecision.SLEEPING

    @pytest.mark.parametrize("limit", [0.0, 6.0, 12.5, 30.0])
    def test_on_target_is_idempotent(self, limit: float) -> None:
        """Exporting exactly the target keeps the limit."""
        new_limit, _ = update(limit, 1.0, 1.0, MIN_A, MAX_A)

        assert new_limit == pytest.approx(limit)


class TestInvariants:
    """Properties that hold for any input."""

    @pytest.mark.parametrize("limit", [0.0, 3.0, 6.0, 15.0, 30.0])
    @pytest.mark.parametrize("export", [-100.0, -7.3, -1.0, 0.0, 0.4, 2.9, 5.5, 40.0])
    def test_never_inside_hysteresis_band(self, limit: float, export: float) -> None:
        new_limit, decision = update(limit, export, 1.0, MIN_A, MAX_A)

        assert new_limit == 0.0 or MIN_A <= new_limit <= MAX_A
        assert (decision is ChargeDecision.CHARGING) == (new_limit >= MIN_A)

    @pytest.mark.parametrize("value", [-1e9, -1.0, 0.0, 0.5, 29.99, 30.0, 31.0, 1e9])
    def test_clamp_within_bounds(self, value: float) -> None:
        assert 0.0 <= clamp(value, 0.0, MAX_A) <= MAX_A

    def test_clamp_passes_through_in_range(self) -> None:
        assert clamp(17.25, 0.0, MAX_A) == 17.25
