"""
OpenEVSE RAPI client over the charger's HTTP ``/r`` endpoint.

RAPI commands are sent as a URL-encoded query string and answered with a
small JSON document::

    $ curl --silent 'http://openevse/r?json=1&rapi=%24GE'
    {"cmd": "$GE", "ret": "$OK 30 0121^21"}

``ret`` starts with a status token (``$OK`` on success), followed by
space-separated value tokens and a ``^xx`` checksum suffix that is dropped.

Two kinds of failure are kept apart:

- Transport failures (connect/read/timeout) are retried up to
  ``max_attempts`` with a fixed ``retry_delay_s`` between attempts, then
  surface as RetriesExhausted.
- Protocol failures (non-200, malformed body, non-``$OK`` status) mean the
  charger answered and said no; they raise ProtocolError without a retry.

Operations:
- request(command, args): Send one RAPI command, return the decoded reply.
- enable() / sleep(): ``FE`` / ``FS``.
- get_current_capacity(): ``GE``, amps.
- get_active_charging_current(): ``GG``, milliamps converted to amps.
- set_current_capacity(amps): ``SC <n>``, integer amps.

CHANGELOG:
- 2026-10-17: Add optional HTTP basic auth (STORY-004)
- 2026-10-17: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

import httpx

from solar_evse.src.errors import ProtocolError, RetriesExhausted
from solar_evse.src.models import RapiResponse

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS: int = 3
"""Total attempts per request before giving up on transport errors."""

DEFAULT_RETRY_DELAY_S: float = 2.0
"""Fixed delay between attempts."""

DEFAULT_TIMEOUT_S: float = 10.0
"""HTTP timeout per attempt."""

_OK = "$OK"
_CHECKSUM_SEP = "^"


def build_rapi_url(host: str, command: str, args: Sequence[str] = ()) -> str:
    """Build the ``/r`` URL for a RAPI command.

    ``$`` is sent percent-encoded and arguments are joined with ``+``, which
    the charger decodes as spaces.
    """
    url = f"http://{host}/r?json=1&rapi=%24{command}"
    for arg in args:
        url += f"+{arg}"
    return url


def parse_rapi_body(body: Any) -> RapiResponse:
    """Decode a ``{"cmd", "ret"}`` body into a RapiResponse.

    Raises:
        ProtocolError: If the body is not a dict with string ``cmd``/``ret``,
            or ``ret`` is empty.
    """
    if not isinstance(body, dict):
        raise ProtocolError(f"RAPI body is not an object: {body!r}")
    cmd = body.get("cmd")
    ret = body.get("ret")
    if not isinstance(cmd, str) or not isinstance(ret, str):
        raise ProtocolError(f"RAPI body missing cmd/ret: {body!r}")

    tokens = ret.split(_CHECKSUM_SEP, 1)[0].split()
    if not tokens:
        raise ProtocolError(f"RAPI reply to {cmd} is empty")
    return RapiResponse(cmd=cmd, status=tokens[0], values=tokens[1:])


class RapiClient:
    """Async RAPI client for a single OpenEVSE charging station.

    Args:
        host: OpenEVSE hostname or IP.
        max_attempts: Total attempts per request on transport errors.
        retry_delay_s: Seconds to wait between attempts.
        timeout_s: HTTP timeout per attempt.
        username: Optional HTTP basic auth user.
        password: Optional HTTP basic auth password.
        transport: Optional httpx transport, used by tests.

    Usage::

        charger = RapiClient(host="openevse")
        await charger.set_current_capacity(16)
        await charger.enable()
    """

    def __init__(
        self,
        *,
        host: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        username: str = "",
        password: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._host = host
        self._max_attempts = max_attempts
        self._retry_delay_s = retry_delay_s
        self._timeout_s = timeout_s
        self._auth = httpx.BasicAuth(username, password) if username else None
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(self, command: str, args: Sequence[str] = ()) -> RapiResponse:
        """Send one RAPI command and return the decoded ``$OK`` reply.

        Args:
            command: RAPI mnemonic without the leading ``$`` (e.g. ``"GE"``).
            args: Positional arguments, already formatted as strings.

        Raises:
            RetriesExhausted: If every attempt failed at the transport level.
            ProtocolError: If the charger answered with anything but ``$OK``.
        """
        url = build_rapi_url(self._host, command, args)

        last_exc: httpx.TransportError | None = None
        for attempt in range(1, self._max_attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self._retry_delay_s)
            try:
                response = await self._get(url)
            except httpx.TransportError as exc:
                logger.warning(
                    "RAPI $%s transport error (attempt %d/%d): %s",
                    command,
                    attempt,
                    self._max_attempts,
                    exc,
                )
                last_exc = exc
                continue

            return self._decode(command, response)

        raise RetriesExhausted(command, self._max_attempts) from last_exc

    async def enable(self) -> None:
        """Enable the EVSE (``FE``)."""
        await self.request("FE")

    async def sleep(self) -> None:
        """Put the EVSE to sleep (``FS``)."""
        await self.request("FS")

    async def get_current_capacity(self) -> float:
        """Return the advertised current capacity in amps (``GE``)."""
        reply = await self.request("GE")
        return _first_number(reply)

    async def get_active_charging_current(self) -> float:
        """Return the current actually being drawn, in amps (``GG``)."""
        reply = await self.request("GG")
        return _first_number(reply) / 1000.0

    async def set_current_capacity(self, amps: float) -> None:
        """Set the advertised current capacity (``SC``), truncated to whole amps."""
        await self.request("SC", [str(int(amps))])

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get(self, url: str) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._timeout_s,
            auth=self._auth,
            transport=self._transport,
        ) as client:
            return await client.get(url)

    @staticmethod
    def _decode(command: str, response: httpx.Response) -> RapiResponse:
        if response.status_code != 200:
            raise ProtocolError(
                f"RAPI ${command} returned HTTP {response.status_code}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"RAPI ${command} returned a non-JSON body") from exc

        reply = parse_rapi_body(body)
        if not reply.ok:
            raise ProtocolError(
                f"RAPI ${command} rejected with status {reply.status}"
            )
        logger.debug("RAPI $%s -> %s %s", command, reply.status, reply.values)
        return reply


def _first_number(reply: RapiResponse) -> float:
    """Parse the first value token of a reply as a number."""
    if not reply.values:
        raise ProtocolError(f"RAPI reply to {reply.cmd} has no value")
    try:
        return float(reply.values[0])
    except ValueError as exc:
        raise ProtocolError(
            f"RAPI reply to {reply.cmd} has a non-numeric value: {reply.values[0]!r}"
        ) from exc
