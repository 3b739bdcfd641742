"""
Solar surplus EVSE controller daemon.

Reads net grid consumption from an Enphase Envoy integrated meter, estimates
the current being exported to the grid, and steers an OpenEVSE charging
station's current limit over RAPI so the surplus charges the car instead.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-001)

TODO:
- None
"""
