#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import os
from pathlib import Path

import typer
from rich.console import Console

from shared.banner import print_banner
from shared.config import load_client_config
from shared.errors import ConfigError, ListenError
from shared.log import configure_root_logging, get_logger
from .tunnel import TunnelClient

app = typer.Typer(help="wsbridge client: tunnel local TCP connections over WebSocket")
console = Console()
logger = get_logger(__name__)


def _default_config() -> Path:
    return Path(os.getenv("WSBRIDGE_CLIENT_CONFIG", "client.yaml"))


@app.command()
def run(
    config: Path = typer.Option(_default_config(), "--config", "-c", help="Path to client.yaml (created with defaults if missing)"),
    log_level: str = typer.Option("INFO", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Listen on local_port and relay every connection to websocket_url."""
    configure_root_logging(log_level)
    try:
        cfg = load_client_config(config)
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        raise typer.Exit(code=1)

    print_banner("client", [
        f"TCP listen    : {cfg.listen_host}:{cfg.local_port}",
        f"WebSocket URL : {cfg.websocket_url}",
        f"Dial retries  : {cfg.max_retries} x {cfg.reconnect_delay_sec}s",
    ], console=console)

    client = TunnelClient(cfg)

    async def main_loop() -> None:
        await client.start()
        console.print("[bold green]Waiting for TCP clients...[/]")
        await client.serve_forever()

    try:
        asyncio.run(main_loop())
    except ListenError as e:
        logger.critical(f"Cannot listen: {e}")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("[dim]Interrupted, shutting down[/]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
