from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

import websockets

from shared.log import get_logger

logger = get_logger(__name__)

Connector = Callable[..., Awaitable[websockets.ClientConnection]]
Sleeper = Callable[[float], Awaitable[Any]]


@dataclass
class DialResult:
    url: str
    connection: Optional[websockets.ClientConnection] = None
    attempts: int = 0
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.connection is not None

    @property
    def last_error(self) -> Optional[Exception]:
        return self.errors[-1] if self.errors else None


async def open_websocket(url: str) -> websockets.ClientConnection:
    """Open one tunnel WebSocket. No keepalive pings: open sessions have no timeouts."""
    return await websockets.connect(url, ping_interval=None, max_size=None, compression=None)


async def dial_with_retry(
    url: str,
    max_retries: int,
    retry_delay: float,
    *,
    connect: Connector = open_websocket,
    sleep: Sleeper = asyncio.sleep,
    session_id: Optional[str] = None,
) -> DialResult:
    """
    Dial a WebSocket endpoint, retrying sequentially with a fixed delay.

    Every dial error is retried the same way until max_retries attempts have
    been made; there is no backoff and no distinction between error kinds.

    Args:
        url: ws:// or wss:// endpoint
        max_retries: total number of attempts (<= 0 makes none)
        retry_delay: seconds to wait between two attempts
        connect: coroutine function opening the connection
        sleep: coroutine used for the inter-attempt delay

    Returns:
        DialResult; .ok is False once the attempt budget is exhausted
    """
    result = DialResult(url=url)
    extra = {"session_id": session_id} if session_id else {}

    for attempt in range(1, max_retries + 1):
        result.attempts = attempt
        try:
            result.connection = await connect(url)
        except Exception as e:
            result.errors.append(e)
            logger.warning(f"WebSocket dial attempt {attempt}/{max_retries} to {url} failed: {e}", extra=extra)
            if attempt < max_retries:
                await sleep(retry_delay)
            continue
        logger.info(f"WebSocket connected to {url} (attempt {attempt})", extra=extra)
        return result

    logger.error(f"All {max_retries} dial attempts to {url} failed; giving up", extra=extra)
    return result
