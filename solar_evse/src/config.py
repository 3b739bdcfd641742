"""
Daemon configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
All configuration values come from environment variables or .env files;
only the Envoy auth token is required, everything else has a default that
matches a typical single-charger home install.

CHANGELOG:
- 2026-10-17: Add RAPI retry, timeout and basic auth settings (STORY-004)
- 2026-10-17: Initial creation (STORY-001)

TODO:
- None
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings


class EvseSettings(BaseSettings):
    """Solar surplus EVSE controller configuration.

    Attributes:
        envoy_host: Hostname or IP of the Enphase Envoy.
        envoy_auth_token: Envoy local auth token (JWT) sent as a bearer token.
        envoy_verify_tls: Verify the Envoy's TLS certificate. The Envoy ships
            a self-signed certificate, so this defaults to False.
        openevse_host: Hostname or IP of the OpenEVSE charging station.
        openevse_username: Optional HTTP basic auth user for the OpenEVSE.
        openevse_password: Optional HTTP basic auth password for the OpenEVSE.
        mqtt_host: MQTT broker host. Empty disables telemetry ingest.
        mqtt_port: MQTT broker port.
        mqtt_base_topic: Base topic the OpenEVSE publishes under.
        poll_period_s: Seconds between control cycles.
        target_export_current: Amps we still want to export; any surplus above
            this is directed to the EVSE.
        evse_min_charge_current: Below this many amps the EVSE is put to sleep.
        evse_max_charge_current: Upper bound for the advertised charge limit.
        rapi_max_attempts: Total attempts per RAPI request on transport errors.
        rapi_retry_delay_s: Fixed delay between RAPI attempts.
        rapi_timeout_s: Per-request HTTP timeout for RAPI calls.
        verify_capacity: Read back the capacity after setting it.
        health_path: Health JSON file path. Empty disables the health file.
    """

    envoy_host: str = "envoy.local"
    envoy_auth_token: str
    envoy_verify_tls: bool = False
    openevse_host: str = "openevse"
    openevse_username: str = ""
    openevse_password: str = ""
    mqtt_host: str = ""
    mqtt_port: int = 1883
    mqtt_base_topic: str = "openevse"
    poll_period_s: int = 60
    target_export_current: float = 1.0
    evse_min_charge_current: float = 6.0
    evse_max_charge_current: float = 30.0
    rapi_max_attempts: int = 3
    rapi_retry_delay_s: float = 2.0
    rapi_timeout_s: float = 10.0
    verify_capacity: bool = True
    health_path: str = "/data/health.json"

    @field_validator("envoy_auth_token")
    @classmethod
    def envoy_auth_token_must_not_be_blank(cls, v: str) -> str:
        """Reject an empty or whitespace-only token."""
        if not v.strip():
            raise ValueError("ENVOY_AUTH_TOKEN must not be empty")
        return v.strip()

    @field_validator("envoy_host", "openevse_host")
    @classmethod
    def host_must_be_bare(cls, v: str) -> str:
        """Hosts are bare hostnames; the URL scheme is fixed by the protocol."""
        if not v or "://" in v or "/" in v:
            raise ValueError(f"Host must be a bare hostname or IP (got: '{v}')")
        return v

    @field_validator("poll_period_s")
    @classmethod
    def poll_period_must_be_positive(cls, v: int) -> int:
        """Validate the control cycle period is at least one second."""
        if v < 1:
            raise ValueError("POLL_PERIOD_S must be >= 1")
        return v

    @field_validator("mqtt_port")
    @classmethod
    def mqtt_port_must_be_valid(cls, v: int) -> int:
        """Validate MQTT port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("MQTT_PORT must be between 1 and 65535")
        return v

    @field_validator("evse_min_charge_current")
    @classmethod
    def min_charge_current_must_be_non_negative(cls, v: float) -> float:
        """Validate the minimum charge current is non-negative."""
        if v < 0:
            raise ValueError("EVSE_MIN_CHARGE_CURRENT must be >= 0")
        return v

    @field_validator("rapi_max_attempts")
    @classmethod
    def rapi_max_attempts_must_be_positive(cls, v: int) -> int:
        """At least one attempt is needed to talk to the charger at all."""
        if v < 1:
            raise ValueError("RAPI_MAX_ATTEMPTS must be >= 1")
        return v

    @field_validator("rapi_retry_delay_s", "rapi_timeout_s")
    @classmethod
    def rapi_timing_must_be_non_negative(cls, v: float) -> float:
        """Validate RAPI delays and timeouts are non-negative."""
        if v < 0:
            raise ValueError("RAPI timing values must be >= 0")
        return v

    @model_validator(mode="after")
    def _max_not_below_min(self) -> "EvseSettings":
        """The clamp range [min, max] must be non-empty."""
        if self.evse_max_charge_current < self.evse_min_charge_current:
            raise ValueError(
                "EVSE_MAX_CHARGE_CURRENT must be >= EVSE_MIN_CHARGE_CURRENT"
            )
        return self

    @property
    def amp_topic(self) -> str:
        """MQTT topic carrying the actively drawn current in milliamps."""
        return f"{self.mqtt_base_topic.rstrip('/')}/amp"

    @property
    def pilot_topic(self) -> str:
        """MQTT topic carrying the advertised pilot limit in amps."""
        return f"{self.mqtt_base_topic.rstrip('/')}/pilot"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
