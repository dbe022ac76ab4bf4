#!/usr/bin/env python3
"""
Client face of the bridge: local TCP listener -> WebSocket tunnel.

Each accepted TCP connection gets its own task which dials the configured
WebSocket endpoint (with retries) and then relays until either side ends.
The accept loop itself never waits on a session.
"""

from __future__ import annotations
import asyncio
from collections import deque
from contextlib import suppress
from typing import Deque, Optional, Set

from client.cdn import CdnResolver
from client.dialer import Connector, dial_with_retry, open_websocket
from shared.config import ClientConfig
from shared.errors import ListenError
from shared.log import get_logger, log_session_event
from shared.relay import RelaySession, SessionResult
from shared.utils import format_address, new_session_id

logger = get_logger(__name__)

RECENT_RESULTS = 100


class TunnelClient:

    def __init__(
        self,
        config: ClientConfig,
        *,
        connect: Connector = open_websocket,
        resolver: Optional[CdnResolver] = None,
    ) -> None:
        self.config = config
        self._connect = connect
        if resolver is None and config.resolve_cdn:
            resolver = CdnResolver(config.websocket_url)
        self.resolver = resolver if config.resolve_cdn else None
        self.server: Optional[asyncio.Server] = None
        # most recent finished sessions, newest last
        self.results: Deque[SessionResult] = deque(maxlen=RECENT_RESULTS)
        self._background_tasks: Set[asyncio.Task] = set()

    def _track_background_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to background tasks until completion."""
        self._background_tasks.add(task)

        def _discard(_task: asyncio.Task) -> None:
            self._background_tasks.discard(_task)
            if not _task.cancelled() and _task.exception() is not None:
                logger.error(f"Background task {_task.get_name()} crashed: {_task.exception()!r}")

        task.add_done_callback(_discard)

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (differs from config when local_port is 0)."""
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> int:
        """Bind the local TCP port. Failure here is fatal for the client."""
        host, port = self.config.listen_host, self.config.local_port
        try:
            self.server = await asyncio.start_server(self.handle_connection, host, port)
        except OSError as e:
            raise ListenError(f"cannot listen on {host}:{port}: {e}") from e
        logger.info(f"TCP listener on {host}:{self.port}, tunnelling to {self.config.websocket_url}")
        return self.port

    async def serve_forever(self) -> None:
        if self.server is None:
            await self.start()
        assert self.server is not None
        try:
            await self.server.serve_forever()
        finally:
            await self.close()

    async def close(self) -> None:
        if self.server is not None:
            self.server.close()
        for task in list(self._background_tasks):
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Runs as its own task per accepted TCP connection."""
        task = asyncio.current_task()
        if task is not None:
            self._track_background_task(task)
        session_id = new_session_id()
        peer = format_address(writer.get_extra_info("peername"))
        logger.info("TCP client connected, opening WebSocket tunnel", extra={"session_id": session_id, "peer": peer})

        if self.resolver is not None:
            resolve_task = asyncio.create_task(self.resolver.resolve(session_id), name=f"cdn-{session_id}")
            self._track_background_task(resolve_task)

        try:
            dialed = await dial_with_retry(
                self.config.websocket_url,
                self.config.max_retries,
                self.config.reconnect_delay_sec,
                connect=self._connect,
                session_id=session_id,
            )
        except asyncio.CancelledError:
            writer.close()
            raise
        if not dialed.ok:
            logger.error("Abandoning TCP connection, no WebSocket peer", extra={"session_id": session_id, "peer": peer})
            writer.close()
            with suppress(OSError):
                await writer.wait_closed()
            return

        session = RelaySession(reader, writer, dialed.connection, session_id=session_id)
        result = await session.run()
        self.results.append(result)
        log_session_event(logger, "info" if result.clean else "warning", "Session closed", result=result, peer=peer)
