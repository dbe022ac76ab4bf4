from __future__ import annotations
from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

PROJECT_URL = "https://github.com/FuDujilm/ws-tcp-proxy"

_LOGO = r"""
               _          _     _
 __      _____| |__  _ __(_) __| | __ _  ___
 \ \ /\ / / __| '_ \| '__| |/ _` |/ _` |/ _ \
  \ V  V /\__ \ |_) | |  | | (_| | (_| |  __/
   \_/\_/ |___/_.__/|_|  |_|\__,_|\__, |\___|
                                  |___/
"""


def print_banner(mode: str, details: Sequence[str] = (), console: Optional[Console] = None) -> None:
    """Print the startup banner for the given mode ("client" or "server")."""
    console = console or Console()
    body = Text(_LOGO.strip("\n"), style="cyan")
    body.append(f"\n\nTCP <-> WebSocket bridge - {mode} mode\n", style="bold magenta")
    for line in details:
        body.append(f"{line}\n", style="white")
    body.append(PROJECT_URL, style="dim")
    console.print(Panel(body, expand=False))
