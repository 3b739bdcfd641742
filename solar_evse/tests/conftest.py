"""
Shared test fixtures for controller daemon tests.

Provides environment variable fixtures for EvseSettings configuration tests
and small builders for meter readings. All daemon env vars are cleaned before
each test to ensure isolation.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from solar_evse.src.models import MeterReading

# All EvseSettings environment variable names, used for cleanup.
_ALL_EVSE_ENV_VARS = (
    "ENVOY_HOST",
    "ENVOY_AUTH_TOKEN",
    "ENVOY_VERIFY_TLS",
    "OPENEVSE_HOST",
    "OPENEVSE_USERNAME",
    "OPENEVSE_PASSWORD",
    "MQTT_HOST",
    "MQTT_PORT",
    "MQTT_BASE_TOPIC",
    "POLL_PERIOD_S",
    "TARGET_EXPORT_CURRENT",
    "EVSE_MIN_CHARGE_CURRENT",
    "EVSE_MAX_CHARGE_CURRENT",
    "RAPI_MAX_ATTEMPTS",
    "RAPI_RETRY_DELAY_S",
    "RAPI_TIMEOUT_S",
    "VERIFY_CAPACITY",
    "HEALTH_PATH",
)

BASE_TIME = datetime(2026, 6, 21, 12, 0, 0, tzinfo=UTC)


def make_reading(
    *,
    offset_s: int = 0,
    power_w: float = 0.0,
    energy_wh: float = 1000.0,
    voltage: float = 240.0,
) -> MeterReading:
    """Build a MeterReading *offset_s* seconds after BASE_TIME."""
    return MeterReading(
        reading_time=BASE_TIME + timedelta(seconds=offset_s),
        instantaneous_power_w=power_w,
        cumulative_energy_wh=energy_wh,
        rms_voltage=voltage,
    )


@pytest.fixture(autouse=True)
def _clean_evse_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all daemon env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_EVSE_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set all required and optional environment variables for EvseSettings.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "ENVOY_HOST": "192.168.1.20",
        "ENVOY_AUTH_TOKEN": "eyJ-test-token",
        "ENVOY_VERIFY_TLS": "true",
        "OPENEVSE_HOST": "192.168.1.30",
        "OPENEVSE_USERNAME": "admin",
        "OPENEVSE_PASSWORD": "hunter2",
        "MQTT_HOST": "broker.local",
        "MQTT_PORT": "1884",
        "MQTT_BASE_TOPIC": "garage/evse",
        "POLL_PERIOD_S": "30",
        "TARGET_EXPORT_CURRENT": "0.5",
        "EVSE_MIN_CHARGE_CURRENT": "6",
        "EVSE_MAX_CHARGE_CURRENT": "32",
        "RAPI_MAX_ATTEMPTS": "5",
        "RAPI_RETRY_DELAY_S": "1.5",
        "RAPI_TIMEOUT_S": "4",
        "VERIFY_CAPACITY": "false",
        "HEALTH_PATH": "/tmp/health.json",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only the required environment variables (no optional ones).

    Optional variables should fall back to their defaults.
    """
    env = {"ENVOY_AUTH_TOKEN": "eyJ-required-token"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env
