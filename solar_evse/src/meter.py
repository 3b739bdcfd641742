"""
Envoy meter reader for the net-consumption integrated meter.

Fetches ``/production.json?details=1`` from the Enphase Envoy over HTTPS
with the local bearer token and extracts the single consumption entry of
type ``eim`` measuring ``net-consumption``. Only the fields the surplus
estimator needs are kept.

The Envoy serves a self-signed certificate, so TLS verification is opt-in.

Operations:
- read(): Fetch and return the current MeterReading.
- parse_net_consumption(payload): Pure extraction from a production.json dict.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from solar_evse.src.errors import ConfigurationError, MeterError
from solar_evse.src.models import MeterReading

logger = logging.getLogger(__name__)

_PRODUCTION_PATH = "/production.json"
_EIM_TYPE = "eim"
_NET_CONSUMPTION = "net-consumption"
_DEFAULT_TIMEOUT_S = 10.0


def parse_net_consumption(payload: dict[str, Any]) -> MeterReading:
    """Extract the net-consumption integrated meter reading.

    Args:
        payload: Decoded ``production.json`` body.

    Returns:
        The MeterReading for the net-consumption EIM.

    Raises:
        ConfigurationError: If there is not exactly one net-consumption EIM,
            or its entry lacks the required fields.
    """
    devices = payload.get("consumption")
    if not isinstance(devices, list):
        raise ConfigurationError("Envoy production data has no consumption list")

    matches = [
        device
        for device in devices
        if isinstance(device, dict)
        and device.get("type") == _EIM_TYPE
        and device.get("measurementType") == _NET_CONSUMPTION
    ]
    if not matches:
        raise ConfigurationError("No net-consumption integrated meter found")
    if len(matches) > 1:
        raise ConfigurationError(
            f"Expected one net-consumption integrated meter, found {len(matches)}"
        )

    device = matches[0]
    try:
        return MeterReading(
            reading_time=datetime.fromtimestamp(int(device["readingTime"]), tz=UTC),
            instantaneous_power_w=float(device["wNow"]),
            cumulative_energy_wh=float(device["whLifetime"]),
            rms_voltage=float(device["rmsVoltage"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Net-consumption meter entry is incomplete: {exc!r}"
        ) from exc


class EnvoyMeter:
    """Reads the net grid meter from an Enphase Envoy.

    Args:
        host: Envoy hostname or IP.
        auth_token: Envoy local auth token, sent as a bearer token.
        verify_tls: Verify the Envoy certificate (default False, the Envoy
            uses a self-signed certificate).
        timeout_s: HTTP timeout per request.
        transport: Optional httpx transport, used by tests.

    Usage::

        meter = EnvoyMeter(host="envoy.local", auth_token="eyJ...")
        reading = await meter.read()
    """

    def __init__(
        self,
        *,
        host: str,
        auth_token: str,
        verify_tls: bool = False,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"https://{host}{_PRODUCTION_PATH}"
        self._auth_token = auth_token
        self._verify_tls = verify_tls
        self._timeout_s = timeout_s
        self._transport = transport

    async def read(self) -> MeterReading:
        """Fetch the current net-consumption reading.

        Raises:
            MeterError: On network failure or a non-200 response.
            ConfigurationError: If the response has no usable net meter.
        """
        try:
            async with httpx.AsyncClient(
                verify=self._verify_tls,
                timeout=self._timeout_s,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self._url,
                    params={"details": "1"},
                    headers={"Authorization": f"Bearer {self._auth_token}"},
                )
        except httpx.TransportError as exc:
            raise MeterError(f"Envoy request failed: {exc}") from exc

        if response.status_code != 200:
            raise MeterError(f"Envoy returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise ConfigurationError("Envoy returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError("Envoy production data is not an object")

        reading = parse_net_consumption(payload)
        logger.debug(
            "Meter reading: t=%s w=%.1f wh=%.1f v=%.1f",
            reading.reading_time.isoformat(),
            reading.instantaneous_power_w,
            reading.cumulative_energy_wh,
            reading.rms_voltage,
        )
        return reading
