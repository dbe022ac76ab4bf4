import asyncio
import logging
import os
import socket
import sys
import tempfile
from pathlib import Path

import pytest
from websockets.exceptions import ConnectionClosedError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# keep test runs from writing into the working tree's logs/
os.environ.setdefault("WSBRIDGE_LOG_DIR", tempfile.mkdtemp(prefix="wsbridge-logs-"))


class DummyTransport:
    def __init__(self) -> None:
        self.abort_calls = 0

    def abort(self) -> None:
        self.abort_calls += 1


class DummyWebSocket:
    """Stands in for a websockets connection; incoming frames are fed by the test."""

    def __init__(self, incoming=()) -> None:
        self.sent: list[bytes] = []
        self.incoming: asyncio.Queue = asyncio.Queue()
        for item in incoming:
            self.incoming.put_nowait(item)
        self.close_calls: list[tuple[int, str]] = []
        self.closed = False
        self.transport = DummyTransport()
        self.remote_address = ("127.0.0.1", 50000)

    def feed(self, item) -> None:
        self.incoming.put_nowait(item)

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        self.sent.append(bytes(data))

    async def recv(self, decode=None):
        item = await self.incoming.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append((code, reason))
        self.closed = True

    @property
    def received(self) -> bytes:
        return b"".join(self.sent)


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.messages: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.messages.append(record.getMessage())


async def tcp_pair():
    """Two connected (reader, writer) pairs backed by a socketpair."""
    a, b = socket.socketpair()
    local = await asyncio.open_connection(sock=a)
    peer = await asyncio.open_connection(sock=b)
    return local, peer


async def wait_for(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    end = loop.time() + timeout
    while loop.time() < end:
        if predicate():
            return True
        await asyncio.sleep(0.02)
    return False


@pytest.fixture
def capture_logs():
    """Attach a list handler to a project logger (they do not propagate to root)."""
    attached = []

    def _attach(logger: logging.Logger) -> ListHandler:
        handler = ListHandler()
        logger.addHandler(handler)
        attached.append((logger, handler))
        return handler

    yield _attach
    for logger, handler in attached:
        logger.removeHandler(handler)
