# SPDX-FileCopyrightText: 2025 - Canonical Ltd
# SPDX-License-Identifier: Apache-2.0
"""Persistent websocket channel to the relay.

The channel never reconnects on its own. Its lifecycle is
``IDLE -> CONNECTING -> OPEN -> CLOSED`` (or ``CONNECTING -> CLOSED`` on a
failed attach) and everything that happens to it is published, in order,
on a single event stream consumed by the owning session controller.
"""

import asyncio
from enum import Enum
from typing import AsyncIterator, NamedTuple, Optional, Union

import aiohttp
from oslo_log import log as logging

from relayshare.conf import RelayConfig
from relayshare.exceptions import DecodeError
from relayshare.relay import protocol

LOG = logging.getLogger(__name__)

CLOSE_REASONS = {
    1000: "Connection closed normally",
    1001: "Going away",
    1002: "Protocol error",
    1003: "Unsupported data type",
    1005: "No status code provided",
    1006: "Connection failed - host not connected or PIN invalid",
    1007: "Invalid frame payload data",
    1008: "Policy violation",
    1009: "Message too big",
    1010: "Client terminating connection",
    1011: "Server error",
    1012: "Service restart",
    1013: "Try again later",
    1014: "Bad gateway",
    1015: "TLS handshake failed",
}


def close_reason(code: Optional[int]) -> str:
    """Human readable reason for a websocket close code."""
    if code is None:
        return "Disconnected"
    return CLOSE_REASONS.get(code, f"Disconnected (Code: {code})")


class ChannelState(str, Enum):
    """Lifecycle states of a relay channel."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ChannelOpened(NamedTuple):
    """The websocket attach succeeded."""

    url: str


class EnvelopeReceived(NamedTuple):
    """A decoded inbound envelope."""

    envelope: protocol.Envelope


class DecodeFailed(NamedTuple):
    """An inbound frame was dropped because it could not be decoded."""

    error: DecodeError


class ChannelClosedEvent(NamedTuple):
    """The channel reached its terminal state."""

    code: Optional[int]
    reason: str
    requested: bool = False


ChannelEvent = Union[ChannelOpened, EnvelopeReceived, DecodeFailed, ChannelClosedEvent]


class RelayChannel:
    """One websocket connection to the relay and its ordered event stream."""

    def __init__(self, config: RelayConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._events: asyncio.Queue = asyncio.Queue()
        self._state = ChannelState.IDLE
        self._close_requested = False
        self._closed_event: Optional[ChannelClosedEvent] = None
        self.url: Optional[str] = None

    @property
    def state(self) -> ChannelState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Whether sends are currently accepted."""
        return self._state == ChannelState.OPEN

    @property
    def closed_event(self) -> Optional[ChannelClosedEvent]:
        """The close event, once the channel is closed."""
        return self._closed_event

    async def connect(self, url: str) -> Union[ChannelOpened, ChannelClosedEvent]:
        """Attach to the relay at ``url``.

        Returns the open event on success, or the close event when the
        relay refused the attach. Either is also published on the stream.
        """
        if self._state != ChannelState.IDLE:
            raise RuntimeError(f"channel already used (state {self._state.value})")
        self.url = url
        self._state = ChannelState.CONNECTING
        LOG.info("Connecting to relay at %s", url)
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            self._ws = await self._session.ws_connect(
                url,
                heartbeat=self.config.heartbeat,
                max_msg_size=self.config.max_message_size,
            )
        except aiohttp.WSServerHandshakeError as exc:
            LOG.warning("Relay refused websocket attach to %s: %s", url, exc.status)
            return await self._finish(None, f"relay refused connection ({exc.status})")
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            LOG.warning("Failed to connect to relay at %s: %s", url, exc)
            return await self._finish(None, f"connection failed: {exc}")

        if self._close_requested:
            await self._ws.close()
            return await self._finish(self._ws.close_code, "closed by client")

        self._state = ChannelState.OPEN
        opened = ChannelOpened(url)
        self._events.put_nowait(opened)
        self._reader = asyncio.create_task(self._read_loop(), name="relay-channel-reader")
        LOG.info("Relay channel open: %s", url)
        return opened

    async def _read_loop(self) -> None:
        ws = self._ws
        code: Optional[int] = None
        reason = ""
        try:
            while True:
                msg = await ws.receive()
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    self._dispatch_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.CLOSE:
                    code, reason = msg.data, msg.extra or ""
                    break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    LOG.warning("Relay channel error: %s", ws.exception())
                    reason = f"network error: {ws.exception()}"
                    break
                else:
                    # CLOSING/CLOSED, including a close() issued by the owner
                    break
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            LOG.warning("Relay channel receive failed: %s", exc)
            reason = f"network error: {exc}"
        if code is None:
            code = ws.close_code
        await self._finish(code, reason)

    def _dispatch_frame(self, raw) -> None:
        try:
            envelope = protocol.decode(raw)
        except DecodeError as exc:
            LOG.warning("Dropping undecodable frame: %s", exc)
            self._events.put_nowait(DecodeFailed(exc))
            return
        LOG.debug("<- %s", envelope.type)
        self._events.put_nowait(EnvelopeReceived(envelope))

    async def _finish(self, code: Optional[int], reason: str) -> ChannelClosedEvent:
        if self._closed_event is not None:
            return self._closed_event
        self._state = ChannelState.CLOSED
        if self._close_requested:
            reason = reason or "closed by client"
        event = ChannelClosedEvent(code, reason or close_reason(code), self._close_requested)
        self._closed_event = event
        self._events.put_nowait(event)
        LOG.info("Relay channel closed (%s): %s", code, event.reason)
        if self._owns_session and self._session is not None:
            await self._session.close()
        return event

    async def send(self, envelope: protocol.Envelope) -> bool:
        """Send one envelope.

        Only valid while open; otherwise nothing is sent and False is
        returned. Callers gate sends on :attr:`is_open`.
        """
        if not self.is_open:
            LOG.debug("Not sending %s: channel is %s", envelope.type, self._state.value)
            return False
        try:
            await self._ws.send_str(envelope.encode())
        except (ConnectionResetError, aiohttp.ClientError, RuntimeError) as exc:
            LOG.warning("Failed to send %s: %s", envelope.type, exc)
            return False
        LOG.debug("-> %s", envelope.type)
        return True

    async def close(self) -> None:
        """Request a graceful shutdown. Safe to call more than once."""
        self._close_requested = True
        if self._state == ChannelState.IDLE:
            await self._finish(None, "closed by client")
            return
        if self._state == ChannelState.CLOSED:
            return
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._reader is not None:
            await self._reader

    async def events(self) -> AsyncIterator[ChannelEvent]:
        """Yield channel events in arrival order, ending with the close event."""
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, ChannelClosedEvent):
                return
