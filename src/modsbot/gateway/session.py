"""
Long-lived gateway session with heartbeat, resume and reconnect backoff.

State machine
-------------
::

    DISCONNECTED -> CONNECTING -> IDENTIFIED -> ACTIVE
                        ^                         |
                        |                         v
                        +------- (resume refused) RECONNECTING
                                                  |
                                   (resume) ------+-> IDENTIFIED -> ACTIVE

* ``CONNECTING``: fresh websocket, IDENTIFY after HELLO.
* ``IDENTIFIED``: READY (or RESUMED) received; the platform assigned/kept the session id.
* ``ACTIVE``: ``on_ready`` hydration finished, dispatch frames flow to :attr:`events`.
* ``RECONNECTING``: transport error, missed heartbeat ACKs, op 7 or a
  resumable close. After the backoff the session RESUMEs with the saved
  ``session_id``/sequence; an op 9 ``d=false`` or non-resumable close code
  drops them and the next attempt is a full ``CONNECTING`` cycle.

Decoded events are pushed to :attr:`events` in sequence order; the
dispatcher is the only consumer. Dispatch frames whose sequence number is not
newer than the last one seen are dropped so a resume replay is never
delivered twice.
"""

from __future__ import annotations

import asyncio
import enum
import json
import random
import sys
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
import discord
from discord.backoff import ExponentialBackoff

from modsbot.configuration.app_configuration import GatewaySettings
from modsbot.errors import FatalGatewayError, TransportError
from modsbot.gateway.events import GatewayEvent, Ready, Resumed, decode_dispatch
from modsbot.http.platform_api import with_gateway_params
from modsbot.util.logger import get_logger

logger = get_logger("gateway")


class SessionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    IDENTIFIED = "identified"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"


class GatewayOp(enum.IntEnum):
    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    RESUME = 6
    RECONNECT = 7
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


# Authentication / intents / version problems: reconnecting cannot help
FATAL_CLOSE_CODES = frozenset({4004, 4010, 4011, 4012, 4013, 4014})
# The session is gone; reconnect with a fresh IDENTIFY
NON_RESUMABLE_CLOSE_CODES = frozenset({4007, 4009})
# Close code we use ourselves when we intend to resume (1000/1001 would invalidate the session)
RESUME_CLOSE_CODE = 4000
MISSED_ACKS_BEFORE_RECONNECT = 2
HELLO_TIMEOUT = 30.0

_CLOSING_TYPES = (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR)


class ReconnectBackoff:
    """
    Exponential backoff with jitter clamped to ``[floor, ceiling]``.

    Wraps py-cord's :class:`~discord.backoff.ExponentialBackoff` (uniform
    jitter, doubling exponent). :meth:`note_active_period` resets it to the
    floor once a connection has stayed ``ACTIVE`` for ``reset_after`` seconds.
    """

    def __init__(self, settings: GatewaySettings) -> None:
        self._floor = max(0.0, settings.backoff_floor_seconds)
        self._ceiling = max(self._floor, settings.backoff_ceiling_seconds)
        self._reset_after = settings.backoff_reset_after_seconds
        self.reset()

    def reset(self) -> None:
        self._backoff = ExponentialBackoff(base=max(self._floor, 0.01))

    def delay(self) -> float:
        return min(self._ceiling, max(self._floor, self._backoff.delay()))

    def note_active_period(self, seconds: float) -> None:
        if seconds >= self._reset_after:
            logger.debug("[GATEWAY] Session was active for %.1fs, resetting backoff", seconds)
            self.reset()


class GatewaySession:
    """
    Owns the single gateway connection and its resumable session state.

    ``connect()`` blocks until :meth:`close` is called or the platform rejects
    the session for good (:class:`FatalGatewayError`).
    """

    def __init__(
        self,
        *,
        token: str,
        intents: int,
        settings: GatewaySettings,
        open_websocket: Callable[[str], Awaitable[Any]],
        fetch_gateway_url: Callable[[], Awaitable[str]],
        on_ready: Callable[[Ready], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._token = token
        self._intents = intents
        self._open_websocket = open_websocket
        self._fetch_gateway_url = fetch_gateway_url
        self._on_ready = on_ready
        self._clock = clock

        self.events: asyncio.Queue[GatewayEvent] = asyncio.Queue()
        self.state = SessionState.DISCONNECTED

        # Resumable session state, kept across reconnects
        self.session_id: Optional[str] = None
        self.sequence: Optional[int] = None
        self.resume_gateway_url: Optional[str] = None
        self._gateway_url: Optional[str] = None

        self._ws: Any = None
        self._closing = False
        self._close_event = asyncio.Event()
        self._backoff = ReconnectBackoff(settings)
        self._active_since: Optional[float] = None

        self.heartbeat_interval: Optional[float] = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._awaiting_ack = False
        self._missed_acks = 0
        self._zombie = False
        self.last_ack_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None

    async def connect(self) -> None:
        """Run the session until closed; reconnects internally on transport errors."""
        self._closing = False
        self._close_event.clear()
        self._set_state(SessionState.CONNECTING)

        try:
            while not self._closing:
                try:
                    await self._run_connection()
                except TransportError as exc:
                    if self._closing:
                        break
                    logger.warning(
                        "[GATEWAY] Connection lost: %s (close code %s, resumable=%s)",
                        exc, exc.close_code, exc.resumable,
                    )
                    if not exc.resumable:
                        self._invalidate_session()
                except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
                    if self._closing:
                        break
                    logger.warning("[GATEWAY] Transport failure: %r", exc)
                except discord.HTTPException as exc:
                    if exc.status == 401:
                        raise FatalGatewayError("gateway URL request rejected the token") from exc
                    if self._closing:
                        break
                    logger.warning("[GATEWAY] Could not fetch the gateway URL: %s", exc)

                if self._closing:
                    break

                self._set_state(SessionState.RECONNECTING)
                self._account_active_period()
                delay = self._backoff.delay()
                logger.info(
                    "[GATEWAY] Reconnecting in %.2fs (%s)",
                    delay, "resume" if self.can_resume else "fresh identify",
                )
                if await self._wait_closed(delay):
                    break
        except FatalGatewayError as exc:
            logger.critical("[GATEWAY] Unrecoverable gateway error: %s (close code %s)", exc, exc.close_code)
            raise
        finally:
            await self._stop_heartbeat()
            await self._close_ws(1000)
            self._active_since = None
            self._set_state(SessionState.DISCONNECTED)

    async def close(self) -> None:
        """Stop the session; ``connect()`` returns once the socket is closed."""
        if self._closing:
            return
        logger.info("[GATEWAY] Closing gateway session")
        self._closing = True
        self._close_event.set()
        await self._close_ws(1000)

    # ------------------------------------------------------------------
    # One websocket connection
    # ------------------------------------------------------------------

    async def _run_connection(self) -> None:
        resuming = self.can_resume
        if not resuming:
            self._set_state(SessionState.CONNECTING)

        if resuming and self.resume_gateway_url:
            url = self.resume_gateway_url
        else:
            if self._gateway_url is None:
                self._gateway_url = await self._fetch_gateway_url()
            url = self._gateway_url

        logger.info("[GATEWAY] Opening websocket (%s)", "resume" if resuming else "identify")
        self._zombie = False
        self._ws = await self._open_websocket(url)
        try:
            hello = await asyncio.wait_for(self._receive(), timeout=HELLO_TIMEOUT)
            if not hello or hello.get("op") != GatewayOp.HELLO:
                raise TransportError("first frame was not HELLO")
            self.heartbeat_interval = float(hello["d"]["heartbeat_interval"]) / 1000.0
            self._start_heartbeat(self.heartbeat_interval)

            if resuming:
                await self._send_resume()
            else:
                await self._send_identify()

            while not self._closing:
                payload = await self._receive()
                if payload is not None:
                    await self._handle_payload(payload)
        finally:
            await self._stop_heartbeat()
            await self._close_ws(RESUME_CLOSE_CODE)

    async def _receive(self) -> Optional[Dict[str, Any]]:
        ws = self._ws
        if ws is None:
            raise TransportError("websocket is not open")

        msg = await ws.receive()
        if msg.type in _CLOSING_TYPES:
            code = msg.data if msg.type == aiohttp.WSMsgType.CLOSE else getattr(ws, "close_code", None)
            raise self._close_error(code)

        if msg.type == aiohttp.WSMsgType.BINARY:
            raw = msg.data.decode("utf-8", errors="replace")
        elif msg.type == aiohttp.WSMsgType.TEXT:
            raw = msg.data
        else:
            return None

        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("[GATEWAY] Dropping undecodable frame (%d bytes)", len(raw))
            return None
        return payload if isinstance(payload, dict) else None

    def _close_error(self, code: Optional[int]) -> Exception:
        if self._zombie:
            return TransportError("heartbeat ACK missed", close_code=code, resumable=True)
        if code in FATAL_CLOSE_CODES:
            return FatalGatewayError(f"gateway closed the session with code {code}", close_code=code)
        if code in NON_RESUMABLE_CLOSE_CODES:
            return TransportError("session can no longer be resumed", close_code=code, resumable=False)
        return TransportError("websocket closed", close_code=code, resumable=True)

    async def _handle_payload(self, payload: Dict[str, Any]) -> None:
        op = payload.get("op")
        data = payload.get("d")

        if op == GatewayOp.DISPATCH:
            seq = payload.get("s")
            if seq is not None:
                if self.sequence is not None and seq <= self.sequence:
                    logger.debug("[GATEWAY] Dropping replayed dispatch %s (seq %s <= %s)", payload.get("t"), seq, self.sequence)
                    return
                self.sequence = seq
            await self._handle_dispatch(payload.get("t"), data)
        elif op == GatewayOp.HEARTBEAT_ACK:
            self._awaiting_ack = False
            self._missed_acks = 0
            self.last_ack_at = self._clock()
        elif op == GatewayOp.HEARTBEAT:
            await self._send_heartbeat()
        elif op == GatewayOp.RECONNECT:
            raise TransportError("server requested reconnect", resumable=True)
        elif op == GatewayOp.INVALID_SESSION:
            resumable = bool(data)
            if not resumable:
                self._invalidate_session()
            raise TransportError("session invalidated by the gateway", resumable=resumable)
        else:
            logger.debug("[GATEWAY] Ignoring frame with op %r", op)

    async def _handle_dispatch(self, event_type: Optional[str], data: Any) -> None:
        event = decode_dispatch(event_type, data)
        if event is None:
            logger.debug("[GATEWAY] Ignoring dispatch %s", event_type)
            return

        if isinstance(event, Ready):
            self.session_id = event.session_id
            if event.resume_gateway_url:
                self.resume_gateway_url = with_gateway_params(event.resume_gateway_url)
            self._set_state(SessionState.IDENTIFIED)
            # Queue READY first so the consumer resets caches before any GUILD_CREATE
            self.events.put_nowait(event)
            if self._on_ready is not None:
                await self._on_ready(event)
            self._mark_active()
        elif isinstance(event, Resumed):
            self._set_state(SessionState.IDENTIFIED)
            self.events.put_nowait(event)
            self._mark_active()
        else:
            self.events.put_nowait(event)

    # ------------------------------------------------------------------
    # Outbound frames
    # ------------------------------------------------------------------

    async def _send(self, payload: Dict[str, Any]) -> None:
        if self._ws is None or self._ws.closed:
            raise TransportError("websocket is not open")
        await self._ws.send_json(payload)

    async def _send_identify(self) -> None:
        await self._send({
            "op": GatewayOp.IDENTIFY,
            "d": {
                "token": self._token,
                "intents": self._intents,
                "properties": {"os": sys.platform, "browser": "modsbot", "device": "modsbot"},
            },
        })
        logger.info("[GATEWAY] Sent IDENTIFY")

    async def _send_resume(self) -> None:
        await self._send({
            "op": GatewayOp.RESUME,
            "d": {"token": self._token, "session_id": self.session_id, "seq": self.sequence},
        })
        logger.info("[GATEWAY] Sent RESUME (session %s, seq %s)", self.session_id, self.sequence)

    async def _send_heartbeat(self) -> None:
        await self._send({"op": GatewayOp.HEARTBEAT, "d": self.sequence})
        self._awaiting_ack = True

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _start_heartbeat(self, interval: float) -> None:
        self._awaiting_ack = False
        self._missed_acks = 0
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval), name="modsbot-heartbeat")

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _heartbeat_loop(self, interval: float) -> None:
        # First beat is jittered so a fleet of restarts does not beat in lockstep
        await asyncio.sleep(interval * random.random())
        while True:
            if self._awaiting_ack:
                self._missed_acks += 1
                if self._missed_acks >= MISSED_ACKS_BEFORE_RECONNECT:
                    logger.warning("[GATEWAY] No heartbeat ACK for %d intervals, reconnecting", self._missed_acks)
                    self._zombie = True
                    await self._close_ws(RESUME_CLOSE_CODE)
                    return
            try:
                await self._send_heartbeat()
            except (TransportError, ConnectionError, RuntimeError) as exc:
                logger.debug("[GATEWAY] Heartbeat send failed: %r", exc)
                return
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.info("[GATEWAY] %s -> %s", self.state.name, state.name)
        self.state = state

    def _mark_active(self) -> None:
        self._active_since = self._clock()
        self._set_state(SessionState.ACTIVE)

    def _account_active_period(self) -> None:
        if self._active_since is not None:
            self._backoff.note_active_period(self._clock() - self._active_since)
            self._active_since = None

    def _invalidate_session(self) -> None:
        logger.info("[GATEWAY] Discarding session %s; next connection identifies from scratch", self.session_id)
        self.session_id = None
        self.sequence = None
        self.resume_gateway_url = None

    async def _close_ws(self, code: int) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            return
        try:
            await ws.close(code=code)
        except Exception as exc:
            logger.debug("[GATEWAY] Error while closing websocket: %r", exc)

    async def _wait_closed(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._close_event.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
