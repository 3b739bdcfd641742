"""
Integrating charge controller with a snap-to-zero band below the EVSE minimum.

Each cycle adds the export error (``export_current - target_export``) to the
previous limit rather than recomputing the limit from scratch. The result is
clamped to ``[0, max]``; anything below ``min`` snaps to 0 so the station is
never asked for a current it cannot deliver.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

from solar_evse.src.models import ChargeDecision


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp *value* into ``[lower, upper]``."""
    return max(lower, min(value, upper))


def update(
    limit: float,
    export_current: float,
    target_export: float,
    min_current: float,
    max_current: float,
) -> tuple[float, ChargeDecision]:
    """Compute the next charge limit and whether to charge at all.

    Args:
        limit: Current charge limit in amps.
        export_current: Estimated export current in amps (positive = surplus).
        target_export: Export current to leave flowing to the grid.
        min_current: Minimum current the EVSE can charge at.
        max_current: Maximum charge current to advertise.

    Returns:
        ``(new_limit, decision)``. ``new_limit`` is 0 or within
        ``[min_current, max_current]``.
    """
    raw = limit + export_current - target_export
    new_limit = clamp(raw, 0.0, max_current)
    if new_limit < min_current:
        new_limit = 0.0

    if new_limit >= min_current:
        return new_limit, ChargeDecision.CHARGING
    return new_limit, ChargeDecision.SLEEPING
