"""
MQTT telemetry ingest for the OpenEVSE ``amp`` and ``pilot`` topics.

The OpenEVSE WiFi module publishes plain decimal payloads:

- ``<base>/amp``: current actually drawn by the car, in milliamps.
- ``<base>/pilot``: current limit advertised to the car, in amps.

paho-mqtt runs its network loop in a background thread. Messages are parsed
there and handed to the asyncio control task through a bounded queue using
``loop.call_soon_threadsafe``; the control task applies them to its
TelemetryState while it waits between cycles, so the state has a single
writer and needs no lock.

A malformed payload never stops ingest: the drawn current falls back to 0
and the next message is processed normally.

CHANGELOG:
- 2026-10-17: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any

import paho.mqtt.client as mqtt

from solar_evse.src.errors import TelemetryParseError
from solar_evse.src.models import TelemetryState, TelemetryUpdate

if TYPE_CHECKING:
    from paho.mqtt.properties import Properties
    from paho.mqtt.reasoncodes import ReasonCode

logger = logging.getLogger(__name__)

AMP = "amp"
PILOT = "pilot"

DEFAULT_QUEUE_SIZE: int = 32
"""Bound of the telemetry queue between the MQTT thread and the control task."""

_KEEPALIVE_S = 60


def parse_payload(payload: bytes | str) -> float:
    """Parse a decimal ASCII payload.

    Raises:
        TelemetryParseError: If the payload is not a finite decimal number.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("ascii", errors="replace")
    text = payload.strip()
    try:
        value = float(text)
    except ValueError as exc:
        raise TelemetryParseError(f"Not a decimal payload: {text!r}") from exc
    if not math.isfinite(value):
        raise TelemetryParseError(f"Not a finite payload: {text!r}")
    return value


def parse_message(
    topic: str,
    payload: bytes | str,
    *,
    amp_topic: str,
    pilot_topic: str,
) -> TelemetryUpdate | None:
    """Turn an MQTT message into a TelemetryUpdate.

    Returns:
        The update, with ``value=None`` for a malformed payload, or None if
        the topic is not one we subscribed to.
    """
    if topic == amp_topic:
        channel = AMP
    elif topic == pilot_topic:
        channel = PILOT
    else:
        return None

    try:
        return TelemetryUpdate(channel=channel, value=parse_payload(payload))
    except TelemetryParseError as exc:
        logger.warning("Malformed telemetry on %s: %s", topic, exc)
        return TelemetryUpdate(channel=channel, value=None)


def apply_update(state: TelemetryState, update: TelemetryUpdate) -> None:
    """Apply a parsed update to the telemetry state."""
    if update.channel == AMP:
        if update.value is None:
            state.observed_charge_current_amps = 0.0
        else:
            state.observed_charge_current_amps = update.value / 1000.0
        logger.debug(
            "Observed charge current: %.3f A", state.observed_charge_current_amps
        )
    elif update.channel == PILOT:
        if update.value is None:
            logger.warning("Ignoring malformed pilot value")
            return
        state.pilot_amps = update.value
        logger.info("Pilot: %.1f A", update.value)


class TelemetryIngest:
    """Subscribes to the OpenEVSE telemetry topics and feeds a bounded queue.

    Args:
        host: MQTT broker host.
        port: MQTT broker port.
        amp_topic: Topic carrying drawn current in mA.
        pilot_topic: Topic carrying the pilot limit in A.
        queue: Queue the parsed updates are delivered to.
        loop: Event loop owning *queue*. Defaults to the running loop.
        client: Optional paho client, used by tests.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        amp_topic: str,
        pilot_topic: str,
        queue: asyncio.Queue[TelemetryUpdate],
        loop: asyncio.AbstractEventLoop | None = None,
        client: mqtt.Client | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._amp_topic = amp_topic
        self._pilot_topic = pilot_topic
        self._queue = queue
        self._loop = loop or asyncio.get_running_loop()
        self._client = client or mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._on_connect
        self._client.on_message = self._on_message

    def start(self) -> None:
        """Connect in the background and start paho's network thread."""
        logger.info(
            "Telemetry ingest connecting to %s:%d (%s, %s)",
            self._host,
            self._port,
            self._amp_topic,
            self._pilot_topic,
        )
        self._client.connect_async(self._host, self._port, keepalive=_KEEPALIVE_S)
        self._client.loop_start()

    def stop(self) -> None:
        """Disconnect and stop the network thread."""
        self._client.disconnect()
        self._client.loop_stop()
        logger.info("Telemetry ingest stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: mqtt.ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None,
    ) -> None:
        if reason_code.is_failure:
            logger.warning("MQTT connect failed: %s", reason_code)
            return
        # Subscribing on every connect restores subscriptions after a reconnect.
        client.subscribe([(self._amp_topic, 0), (self._pilot_topic, 0)])
        logger.info("MQTT connected, subscribed to telemetry topics")

    def _on_message(
        self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage
    ) -> None:
        update = parse_message(
            message.topic,
            message.payload,
            amp_topic=self._amp_topic,
            pilot_topic=self._pilot_topic,
        )
        if update is not None:
            self._loop.call_soon_threadsafe(self._offer, update)

    # ------------------------------------------------------------------
    # Event loop side
    # ------------------------------------------------------------------

    def _offer(self, update: TelemetryUpdate) -> None:
        try:
            self._queue.put_nowait(update)
        except asyncio.QueueFull:
            logger.warning("Telemetry queue full, dropping %s update", update.channel)
