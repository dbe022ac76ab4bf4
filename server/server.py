#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import os
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple

import typer
import websockets
from rich.console import Console

from server.hostinfo import report_host_addresses
from shared.banner import print_banner
from shared.config import ServerConfig, load_server_config
from shared.errors import ConfigError, ListenError, PortsExhaustedError
from shared.log import configure_root_logging, get_logger, log_session_event
from shared.relay import RelaySession
from shared.utils import format_address, new_session_id

# Confiure Logging
logger = get_logger(__name__)

MAX_PORT_TRIES = 20
# RFC 6455 caps the close reason at 123 bytes of UTF-8
_MAX_CLOSE_REASON = 123

Handler = Callable[[websockets.ServerConnection], Awaitable[None]]
ServeFactory = Callable[[Handler, str, int], Awaitable[websockets.Server]]
BackendOpener = Callable[[str, int], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


async def open_ws_server(handler: Handler, host: str, port: int) -> websockets.Server:
    """Bind a WebSocket server; raises OSError when the port is taken."""
    return await websockets.serve(
        handler,
        host,
        port,
        ping_interval=None,  # open sessions carry no timeouts
        max_size=None,
        compression=None,
    )


def _bound_port(server: websockets.Server, requested: int) -> int:
    sockets = list(server.sockets)
    if sockets:
        return sockets[0].getsockname()[1]
    return requested


async def serve_with_fallback(
    handler: Handler,
    host: str,
    start_port: int,
    max_tries: int = MAX_PORT_TRIES,
    *,
    serve: ServeFactory = open_ws_server,
) -> Tuple[websockets.Server, int]:
    """
    Bind the first free port of start_port .. start_port+max_tries-1.

    Returns:
        (server, port actually bound)

    Raises:
        PortsExhaustedError: every candidate port failed to bind
    """
    errors: List[OSError] = []
    for offset in range(max_tries):
        port = start_port + offset
        if port > 65535:
            break
        try:
            server = await serve(handler, host, port)
        except OSError as e:
            errors.append(e)
            logger.warning(f"Port {port} is unavailable ({e.strerror or e}), trying the next one", extra={"port": port})
            continue
        port = _bound_port(server, port)
        logger.info(f"WebSocket server listening on ws://{host}:{port}", extra={"port": port})
        return server, port
    raise PortsExhaustedError(start_port, max_tries, errors)


def _close_reason(text: str) -> str:
    encoded = text.encode("utf-8")[:_MAX_CLOSE_REASON]
    return encoded.decode("utf-8", errors="ignore")


class TunnelServer:
    """Accepts WebSocket connections and relays each one to the TCP backend."""

    def __init__(
        self,
        config: ServerConfig,
        *,
        max_port_tries: int = MAX_PORT_TRIES,
        serve: ServeFactory = open_ws_server,
        open_backend: BackendOpener = asyncio.open_connection,
    ) -> None:
        self.config = config
        self.max_port_tries = max_port_tries
        self._serve = serve
        self._open_backend = open_backend
        self.server: Optional[websockets.Server] = None
        self.port: Optional[int] = None

    async def start(self) -> int:
        """Bind with port fallback. PortsExhaustedError here is fatal."""
        self.server, self.port = await serve_with_fallback(
            self.handle_connection,
            self.config.listen_host,
            self.config.ws_port,
            self.max_port_tries,
            serve=self._serve,
        )
        if self.port != self.config.ws_port:
            logger.warning(f"Configured ws_port {self.config.ws_port} was busy; actually using {self.port}")
        return self.port

    async def serve_forever(self) -> None:
        if self.server is None:
            await self.start()
        try:
            await asyncio.Future()  # Run forever
        finally:
            await self.close()

    async def close(self) -> None:
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()

    async def handle_connection(self, websocket: websockets.ServerConnection) -> None:
        """One WebSocket upgrade: dial the backend, then relay until either side ends."""
        session_id = new_session_id()
        peer = format_address(websocket.remote_address)
        extra = {"session_id": session_id, "peer": peer}
        logger.info("New WebSocket connection", extra=extra)

        host, port = self.config.tcp_host, self.config.tcp_port
        try:
            reader, writer = await self._open_backend(host, port)
        except OSError as e:
            logger.error(f"Backend {host}:{port} unreachable: {e}", extra=extra)
            await websocket.close(code=1011, reason=_close_reason(str(e)))
            return
        logger.info(f"Connected to backend {host}:{port}", extra=extra)

        session = RelaySession(reader, writer, websocket, session_id=session_id)
        result = await session.run()
        log_session_event(logger, "info" if result.clean else "warning", "Session closed", result=result, peer=peer)


# ========================================
#           COMMAND LINE
# ========================================

app = typer.Typer(help="wsbridge server: relay WebSocket connections to a TCP backend")
console = Console()


def _default_config() -> Path:
    return Path(os.getenv("WSBRIDGE_SERVER_CONFIG", "config.yaml"))


@app.command()
def run(
    config: Path = typer.Option(_default_config(), "--config", "-c", help="Path to config.yaml (created with defaults if missing)"),
    max_port_tries: int = typer.Option(MAX_PORT_TRIES, help="How many consecutive ports to try from ws_port"),
    log_level: str = typer.Option("INFO", help="DEBUG, INFO, WARNING or ERROR"),
    ip_report: bool = typer.Option(True, "--ip-report/--no-ip-report", help="Log local and public IP addresses at startup"),
):
    """Serve WebSocket upgrades on ws_port (or the next free port) and relay them to tcp_host:tcp_port."""
    configure_root_logging(log_level)
    try:
        cfg = load_server_config(config)
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        raise typer.Exit(code=1)

    print_banner("server", [
        f"WebSocket port : {cfg.ws_port} (+{max_port_tries - 1} fallback)",
        f"TCP backend    : {cfg.backend}",
    ], console=console)

    server = TunnelServer(cfg, max_port_tries=max_port_tries)

    async def main() -> None:
        if ip_report:
            await report_host_addresses()
        await server.start()
        await server.serve_forever()

    try:
        asyncio.run(main())
    except ListenError as e:
        logger.critical(f"Cannot listen: {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[dim]Interrupted, shutting down[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
