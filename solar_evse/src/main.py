"""
Control loop for the solar surplus EVSE controller.

Each cycle runs three phases sequentially in a single asyncio task:

1. **Sampling**: read the net-consumption meter from the Envoy.
2. **Deciding**: estimate the export current from the previous and current
   readings, then integrate it into a new charge limit.
3. **Commanding**: set the capacity and enable the EVSE, or put it to sleep.

Between cycles the task waits, racing three sources: the poll period timer,
the MQTT telemetry queue and the shutdown event. Telemetry updates are
applied and the wait continues; only the timer starts the next cycle. On
SIGTERM/SIGINT the shutdown event is set, any in-flight request finishes,
and a failsafe command sets the charger to maximum capacity and enables it
before exiting.

Fatal errors (no net meter, Envoy unreachable, RAPI protocol errors or
exhausted retries) propagate out of the loop and stop the daemon.

Structured JSON logging is used for all events. A HealthWriter instance
records the outcome of each completed cycle.

CHANGELOG:
- 2026-10-17: Stop commanding once shutdown arrives mid-cycle (STORY-010)
- 2026-10-17: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from solar_evse.src.controller import update
from solar_evse.src.errors import InvalidSample, SolarEvseError
from solar_evse.src.estimator import elapsed_seconds, estimate
from solar_evse.src.health import HealthWriter
from solar_evse.src.models import (
    ChargeDecision,
    LoopState,
    TelemetryState,
    TelemetryUpdate,
)
from solar_evse.src.telemetry import apply_update

if TYPE_CHECKING:
    from solar_evse.src.meter import EnvoyMeter
    from solar_evse.src.openevse import RapiClient

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging() -> None:
    """Configure structured JSON logging for the daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.INFO)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup, excluding secrets.

    The Envoy token is logged only as a fingerprint and the OpenEVSE
    password is omitted.

    Args:
        settings: An EvseSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Controller starting with config: "
        "envoy_host=%s, openevse_host=%s, mqtt_host=%s, mqtt_port=%s, "
        "mqtt_base_topic=%s, poll_period_s=%s, target_export_current=%s, "
        "evse_min_charge_current=%s, evse_max_charge_current=%s, "
        "rapi_max_attempts=%s, rapi_retry_delay_s=%s, "
        "envoy_token_masked=%s",
        settings.envoy_host,  # type: ignore[attr-defined]
        settings.openevse_host,  # type: ignore[attr-defined]
        settings.mqtt_host or "disabled",  # type: ignore[attr-defined]
        settings.mqtt_port,  # type: ignore[attr-defined]
        settings.mqtt_base_topic,  # type: ignore[attr-defined]
        settings.poll_period_s,  # type: ignore[attr-defined]
        settings.target_export_current,  # type: ignore[attr-defined]
        settings.evse_min_charge_current,  # type: ignore[attr-defined]
        settings.evse_max_charge_current,  # type: ignore[attr-defined]
        settings.rapi_max_attempts,  # type: ignore[attr-defined]
        settings.rapi_retry_delay_s,  # type: ignore[attr-defined]
        _masked_token(settings.envoy_auth_token),  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Single-cycle functions (easily testable)
# ---------------------------------------------------------------------------


async def _cycle_once(
    *,
    meter: EnvoyMeter,
    charger: RapiClient,
    state: LoopState,
    target_export_current: float,
    min_charge_current: float,
    max_charge_current: float,
    shutdown_event: asyncio.Event,
    telemetry_state: TelemetryState | None = None,
    verify_capacity: bool = False,
    health: HealthWriter | None = None,
) -> bool:
    """Run one Sampling -> Deciding -> Commanding cycle.

    Errors from the meter or the charger are not caught; they end the
    daemon. A reading that cannot be compared with the previous one skips
    the decision for this cycle.

    Args:
        meter: The Envoy meter reader.
        charger: The OpenEVSE RAPI client.
        state: Loop state, updated in place.
        target_export_current: Export current to leave flowing to the grid.
        min_charge_current: EVSE minimum charge current.
        max_charge_current: EVSE maximum charge current.
        shutdown_event: Once set, no new charger command is started.
        telemetry_state: Latest MQTT telemetry, logged alongside the decision.
        verify_capacity: Read the capacity back after setting it.
        health: HealthWriter instance, or None to skip health writes.

    Returns:
        True if the charger was commanded, False if the cycle was skipped.
    """
    # -- Sampling --
    reading = await meter.read()

    # -- Deciding --
    previous = state.previous_reading
    try:
        export_current = estimate(previous, reading)
    except InvalidSample as exc:
        if previous is not None and elapsed_seconds(previous, reading) < 0:
            # Meter clock went backwards; restart from the new baseline.
            state.previous_reading = reading
        logger.warning("Skipping cycle: %s", exc)
        return False
    if previous is None:
        logger.info(
            "No previous reading to compare to, using instantaneous power this cycle"
        )
    state.previous_reading = reading

    old_limit = state.controller.charge_limit_amps
    new_limit, decision = update(
        old_limit,
        export_current,
        target_export_current,
        min_charge_current,
        max_charge_current,
    )
    state.controller.charge_limit_amps = new_limit
    state.export_current_amps = export_current
    state.decision = decision

    observed = (
        telemetry_state.observed_charge_current_amps
        if telemetry_state is not None
        else 0.0
    )
    logger.info(
        "Export current %.3f A (target %.3f A), charge limit %.3f A -> %.3f A, "
        "%s (observed draw %.3f A)",
        export_current,
        target_export_current,
        old_limit,
        new_limit,
        decision.value,
        observed,
    )

    if shutdown_event.is_set():
        logger.info("Shutdown requested, not commanding the charger")
        return False

    # -- Commanding --
    if decision is ChargeDecision.CHARGING:
        await charger.set_current_capacity(new_limit)
        if _stop_commanding(shutdown_event):
            return False
        if verify_capacity:
            capacity = await charger.get_current_capacity()
            if capacity != int(new_limit):
                logger.warning(
                    "Charger reports capacity %.0f A after setting %d A",
                    capacity,
                    int(new_limit),
                )
            if _stop_commanding(shutdown_event):
                return False
        await charger.enable()
    else:
        await charger.sleep()

    if health is not None:
        try:
            health.record_cycle(
                charge_limit_amps=new_limit,
                decision=decision,
                export_current_amps=export_current,
                observed_charge_current_amps=observed,
            )
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)

    return True


def _stop_commanding(shutdown_event: asyncio.Event) -> bool:
    """True if shutdown arrived while a charger request was in flight."""
    if shutdown_event.is_set():
        logger.info("Shutdown requested mid-command, leaving the rest to the failsafe")
        return True
    return False


async def _wait(
    *,
    period_s: float,
    shutdown_event: asyncio.Event,
    telemetry_queue: asyncio.Queue[TelemetryUpdate],
    telemetry_state: TelemetryState,
) -> bool:
    """Wait out the poll period, applying telemetry as it arrives.

    Returns:
        True if shutdown was requested, False if the period elapsed.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + period_s
    shutdown_waiter = asyncio.ensure_future(shutdown_event.wait())
    getter: asyncio.Future[TelemetryUpdate] | None = None
    try:
        while True:
            if shutdown_event.is_set():
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False

            getter = asyncio.ensure_future(telemetry_queue.get())
            done, _ = await asyncio.wait(
                {shutdown_waiter, getter},
                timeout=remaining,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if getter in done:
                apply_update(telemetry_state, getter.result())
            else:
                getter.cancel()
            if shutdown_waiter in done:
                return True
    finally:
        shutdown_waiter.cancel()
        if getter is not None and not getter.done():
            getter.cancel()


async def _failsafe(
    *,
    charger: RapiClient,
    state: LoopState,
    max_charge_current: float,
) -> None:
    """Leave the charger at full capacity and enabled.

    Best effort: a failure is logged, not raised, since the daemon is
    exiting anyway.
    """
    state.controller.charge_limit_amps = max_charge_current
    logger.info("Failsafe: setting charger to %.1f A and enabling", max_charge_current)
    try:
        await charger.set_current_capacity(max_charge_current)
        await charger.enable()
    except SolarEvseError:
        logger.error("Failsafe command failed", exc_info=True)


# ---------------------------------------------------------------------------
# Loop runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_control_loop(
    *,
    meter: EnvoyMeter,
    charger: RapiClient,
    period_s: float,
    target_export_current: float,
    min_charge_current: float,
    max_charge_current: float,
    shutdown_event: asyncio.Event,
    telemetry_queue: asyncio.Queue[TelemetryUpdate],
    verify_capacity: bool = False,
    health: HealthWriter | None = None,
) -> LoopState:
    """Run control cycles until shutdown, then issue the failsafe command.

    Args:
        meter: The Envoy meter reader.
        charger: The OpenEVSE RAPI client.
        period_s: Seconds between cycles.
        target_export_current: Export current to leave flowing to the grid.
        min_charge_current: EVSE minimum charge current.
        max_charge_current: EVSE maximum charge current.
        shutdown_event: Event to signal graceful shutdown.
        telemetry_queue: Parsed MQTT telemetry updates.
        verify_capacity: Read the capacity back after setting it.
        health: HealthWriter instance, or None to skip health writes.

    Returns:
        The final loop state.
    """
    logger.info("Control loop started (period=%ss)", period_s)
    state = LoopState()
    telemetry_state = TelemetryState()

    while not shutdown_event.is_set():
        await _cycle_once(
            meter=meter,
            charger=charger,
            state=state,
            target_export_current=target_export_current,
            min_charge_current=min_charge_current,
            max_charge_current=max_charge_current,
            shutdown_event=shutdown_event,
            telemetry_state=telemetry_state,
            verify_capacity=verify_capacity,
            health=health,
        )
        if await _wait(
            period_s=period_s,
            shutdown_event=shutdown_event,
            telemetry_queue=telemetry_queue,
            telemetry_state=telemetry_state,
        ):
            break

    await _failsafe(
        charger=charger, state=state, max_charge_current=max_charge_current
    )
    logger.info("Control loop stopped")
    return state


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run the loop.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from solar_evse.src.config import EvseSettings
    from solar_evse.src.meter import EnvoyMeter
    from solar_evse.src.openevse import RapiClient
    from solar_evse.src.telemetry import DEFAULT_QUEUE_SIZE, TelemetryIngest

    settings = EvseSettings()
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    meter = EnvoyMeter(
        host=settings.envoy_host,
        auth_token=settings.envoy_auth_token,
        verify_tls=settings.envoy_verify_tls,
    )

    charger = RapiClient(
        host=settings.openevse_host,
        max_attempts=settings.rapi_max_attempts,
        retry_delay_s=settings.rapi_retry_delay_s,
        timeout_s=settings.rapi_timeout_s,
        username=settings.openevse_username,
        password=settings.openevse_password,
    )

    telemetry_queue: asyncio.Queue[TelemetryUpdate] = asyncio.Queue(
        maxsize=DEFAULT_QUEUE_SIZE
    )
    ingest = None
    if settings.mqtt_host:
        ingest = TelemetryIngest(
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            amp_topic=settings.amp_topic,
            pilot_topic=settings.pilot_topic,
            queue=telemetry_queue,
        )
        ingest.start()
    else:
        logger.info("MQTT_HOST not set, telemetry ingest disabled")

    health = HealthWriter(settings.health_path) if settings.health_path else None

    try:
        await run_control_loop(
            meter=meter,
            charger=charger,
            period_s=settings.poll_period_s,
            target_export_current=settings.target_export_current,
            min_charge_current=settings.evse_min_charge_current,
            max_charge_current=settings.evse_max_charge_current,
            shutdown_event=shutdown_event,
            telemetry_queue=telemetry_queue,
            verify_capacity=settings.verify_capacity,
            health=health,
        )
    except SolarEvseError:
        logger.critical("Fatal error, stopping controller", exc_info=True)
        raise
    finally:
        if ingest is not None:
            ingest.stop()


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the controller daemon."""
    try:
        asyncio.run(async_main())
    except SolarEvseError:
        sys.exit(1)


if __name__ == "__main__":
    main()
