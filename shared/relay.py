"""
Bidirectional relay between one TCP stream and one WebSocket connection.

A RelaySession owns exactly one (StreamReader/StreamWriter, WebSocket) pair.
It runs two copy loops concurrently:

    TCP -> WS   read up to CHUNK_SIZE bytes, send them as one binary message
    WS -> TCP   receive one message, write its payload verbatim and drain

Whichever loop stops first (EOF, read error or write error) fires a one-shot
close signal. run() then stops the other loop and closes both transports,
each exactly once, and returns a SessionResult describing how it ended.
Logging of the outcome is left to the caller.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from shared.log import get_logger
from shared.utils import new_session_id

logger = get_logger(__name__)

CHUNK_SIZE = 4096
TCP_CLOSED_REASON = "tcp closed"

WebSocket = Union[websockets.ClientConnection, websockets.ServerConnection]


class Direction(str, Enum):
    TCP_TO_WS = "tcp->ws"
    WS_TO_TCP = "ws->tcp"


class EndReason(str, Enum):
    """Why the first copy loop of a session stopped."""
    TCP_EOF = "tcp_eof"                  # clean end of stream from the TCP side
    TCP_READ_ERROR = "tcp_read_error"
    TCP_WRITE_ERROR = "tcp_write_error"
    WS_CLOSED = "ws_closed"              # peer sent a close frame
    WS_READ_ERROR = "ws_read_error"
    WS_WRITE_ERROR = "ws_write_error"
    CANCELLED = "cancelled"              # run() itself was cancelled

    @property
    def graceful(self) -> bool:
        return self is EndReason.TCP_EOF


class SessionState(str, Enum):
    ESTABLISHED = "established"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionResult:
    session_id: str
    ended_by: Optional[Direction]
    reason: EndReason
    error: Optional[BaseException]
    bytes_to_ws: int
    bytes_to_tcp: int
    duration: float

    @property
    def clean(self) -> bool:
        return self.error is None


class RelaySession:
    """Pairs one TCP stream with one WebSocket until either side ends."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        websocket: WebSocket,
        *,
        session_id: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
        close_reason: str = TCP_CLOSED_REASON,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.reader = reader
        self.writer = writer
        self.websocket = websocket
        self.session_id = session_id or new_session_id()
        self.chunk_size = chunk_size
        self.close_reason = close_reason

        self.state = SessionState.ESTABLISHED
        self.bytes_to_ws = 0
        self.bytes_to_tcp = 0

        self._close_signal = asyncio.Event()
        self._ended_by: Optional[Direction] = None
        self._reason: Optional[EndReason] = None
        self._error: Optional[BaseException] = None
        self._transports_closed = False
        self._started = False

    @property
    def closing(self) -> bool:
        return self._close_signal.is_set()

    def _finish(self, direction: Optional[Direction], reason: EndReason, error: Optional[BaseException] = None) -> bool:
        """Fire the close signal. Only the first caller's reason is kept."""
        if self._close_signal.is_set():
            logger.debug(
                f"{reason.value} after session already closing; ignored",
                extra={"session_id": self.session_id, "direction": direction.value if direction else "-"},
            )
            return False
        self._ended_by = direction
        self._reason = reason
        self._error = error
        self.state = SessionState.CLOSING
        self._close_signal.set()
        return True

    async def run(self) -> SessionResult:
        """Relay in both directions until one ends, then tear both transports down."""
        if self._started:
            raise RuntimeError("RelaySession.run() may only be called once")
        self._started = True

        started = time.monotonic()
        pumps = [
            asyncio.create_task(self._pump_tcp_to_ws()),
            asyncio.create_task(self._pump_ws_to_tcp()),
        ]
        try:
            await self._close_signal.wait()
        except asyncio.CancelledError:
            self._finish(None, EndReason.CANCELLED)
            raise
        finally:
            for task in pumps:
                task.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)
            await self._close_transports()
            self.state = SessionState.CLOSED

        assert self._reason is not None
        return SessionResult(
            session_id=self.session_id,
            ended_by=self._ended_by,
            reason=self._reason,
            error=self._error,
            bytes_to_ws=self.bytes_to_ws,
            bytes_to_tcp=self.bytes_to_tcp,
            duration=time.monotonic() - started,
        )

    # ========================================
    #           COPY LOOPS
    # ========================================

    async def _pump_tcp_to_ws(self) -> None:
        direction = Direction.TCP_TO_WS
        while True:
            try:
                chunk = await self.reader.read(self.chunk_size)
            except Exception as e:
                self._finish(direction, EndReason.TCP_READ_ERROR, e)
                return
            if not chunk:
                self._finish(direction, EndReason.TCP_EOF)
                return
            try:
                await self.websocket.send(chunk)
            except Exception as e:
                self._finish(direction, EndReason.WS_WRITE_ERROR, e)
                return
            self.bytes_to_ws += len(chunk)

    async def _pump_ws_to_tcp(self) -> None:
        direction = Direction.WS_TO_TCP
        while True:
            try:
                # text frames come through as their raw UTF-8 bytes
                message = await self.websocket.recv(decode=False)
            except ConnectionClosed as e:
                if e.rcvd is not None:
                    self._finish(direction, EndReason.WS_CLOSED, None if isinstance(e, ConnectionClosedOK) else e)
                else:
                    self._finish(direction, EndReason.WS_READ_ERROR, e)
                return
            except Exception as e:
                self._finish(direction, EndReason.WS_READ_ERROR, e)
                return
            try:
                self.writer.write(message)
                await self.writer.drain()
            except Exception as e:
                self._finish(direction, EndReason.TCP_WRITE_ERROR, e)
                return
            self.bytes_to_tcp += len(message)

    # ========================================
    #           TEARDOWN
    # ========================================

    async def _close_transports(self) -> None:
        """Close both transports; a second call is a no-op."""
        if self._transports_closed:
            return
        self._transports_closed = True
        graceful = self._reason is not None and self._reason.graceful
        await asyncio.gather(self._close_websocket(graceful), self._close_tcp())

    async def _close_websocket(self, graceful: bool) -> None:
        if graceful:
            # clean TCP EOF: tell the peer with a close frame
            try:
                await self.websocket.close(code=1000, reason=self.close_reason)
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"WebSocket close failed: {e}", extra={"session_id": self.session_id})
            return
        # abrupt end: drop the connection without a close frame
        self.websocket.transport.abort()

    async def _close_tcp(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug(f"TCP close reported: {e}", extra={"session_id": self.session_id})
