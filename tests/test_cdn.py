import asyncio
import socket

import httpx
import pytest

from conftest import DummyWebSocket, wait_for
from client.cdn import CdnResolver, GeoInfo, query_geo
from client.tunnel import TunnelClient
from shared.config import ClientConfig
from shared.errors import GeoLookupError
from shared.relay import EndReason
from shared.utils import strip_ws_url, ws_probe_target

GEO_SAMPLE = {
    "ip": "104.16.1.1",
    "city": "San Francisco",
    "region": "California",
    "country_name": "United States",
    "org": "CLOUDFLARENET",
    "asn": "AS13335",
    "timezone": "America/Los_Angeles",
    "latitude": 37.7621,
    "longitude": -122.3971,
}


def geo_transport(status=200, body=None, raw=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if raw is not None:
            return httpx.Response(status, content=raw)
        return httpx.Response(status, json=GEO_SAMPLE if body is None else body)
    return httpx.MockTransport(handler)


@pytest.mark.parametrize("url, expected", [
    ("ws://example.com", ("example.com", 80)),
    ("wss://example.com/tunnel/x", ("example.com", 443)),
    ("ws://example.com:8080/path", ("example.com", 8080)),
    ("wss://example.com:8443", ("example.com", 8443)),
    ("ws://[2001:db8::1]:9000/", ("2001:db8::1", 9000)),
])
def test_probe_target(url, expected):
    assert ws_probe_target(url) == expected


def test_strip_ws_url():
    assert strip_ws_url("wss://edge.example.com:8443/a/b") == "edge.example.com:8443"


def test_geo_info_from_json():
    geo = GeoInfo.from_json(GEO_SAMPLE)
    assert geo.country == "United States"
    assert geo.asn == "AS13335"
    assert geo.latitude == pytest.approx(37.7621)
    assert "CLOUDFLARENET" in geo.summary()


@pytest.mark.parametrize("data", [
    ["not", "an", "object"],
    {"error": True, "reason": "RateLimited"},
    {"latitude": "north-ish"},
])
def test_geo_info_rejects_bad_payloads(data):
    with pytest.raises(GeoLookupError):
        GeoInfo.from_json(data)


@pytest.mark.asyncio
async def test_query_geo_uses_ipapi():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json=GEO_SAMPLE)

    geo = await query_geo("104.16.1.1", transport=httpx.MockTransport(handler))
    assert seen == ["https://ipapi.co/104.16.1.1/json"]
    assert geo.city == "San Francisco"


@pytest.mark.asyncio
async def test_query_geo_malformed_json():
    with pytest.raises(GeoLookupError):
        await query_geo("1.2.3.4", transport=geo_transport(raw=b"<html>nope</html>"))


async def _listener():
    async def on_connect(reader, writer):
        writer.close()
    server = await asyncio.start_server(on_connect, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1]


@pytest.mark.asyncio
async def test_resolver_reports_ip_and_geo():
    server, port = await _listener()
    try:
        resolver = CdnResolver(f"ws://127.0.0.1:{port}/tunnel", transport=geo_transport())
        report = await resolver.resolve()
    finally:
        server.close()
    assert report.ip == "127.0.0.1"
    assert report.port == port
    assert report.geo.org == "CLOUDFLARENET"


@pytest.mark.asyncio
async def test_resolver_swallows_geo_failures():
    server, port = await _listener()
    try:
        resolver = CdnResolver(f"ws://127.0.0.1:{port}", transport=geo_transport(status=503))
        report = await resolver.resolve()
    finally:
        server.close()
    assert report.ip == "127.0.0.1"
    assert report.geo is None


@pytest.mark.asyncio
async def test_resolver_swallows_probe_failures():
    # grab a port that nothing listens on
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    resolver = CdnResolver(f"ws://127.0.0.1:{port}", transport=geo_transport())
    assert await resolver.resolve() is None


@pytest.mark.asyncio
async def test_resolver_swallows_unencodable_hosts():
    # an empty label fails IDNA encoding inside getaddrinfo
    resolver = CdnResolver("ws://a..b/x", transport=geo_transport())
    assert await resolver.resolve() is None


@pytest.mark.asyncio
async def test_resolver_swallows_invalid_geo_urls():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.InvalidURL("Invalid URL component 'path'")

    server, port = await _listener()
    try:
        resolver = CdnResolver(f"ws://127.0.0.1:{port}", transport=httpx.MockTransport(handler))
        report = await resolver.resolve()
    finally:
        server.close()
    assert report.ip == "127.0.0.1"
    assert report.geo is None


class BrokenResolver:
    def __init__(self) -> None:
        self.calls = 0

    async def resolve(self, session_id=None):
        self.calls += 1
        raise RuntimeError("geolocation service exploded")


class HangingResolver:
    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def resolve(self, session_id=None):
        self.started.set()
        await asyncio.sleep(3600)


@pytest.mark.asyncio
@pytest.mark.parametrize("resolver_cls", [BrokenResolver, HangingResolver])
async def test_sessions_complete_whatever_the_resolver_does(resolver_cls):
    resolver = resolver_cls()
    sockets = []

    async def connect(url):
        ws = DummyWebSocket()
        sockets.append(ws)
        return ws

    config = ClientConfig(local_port=0, listen_host="127.0.0.1", websocket_url="ws://127.0.0.1:9",
                          reconnect_delay_sec=0, max_retries=1, resolve_cdn=True)
    client = TunnelClient(config, connect=connect, resolver=resolver)
    port = await client.start()
    try:
        for i in range(3):
            reader, writer = await asyncio.open_connection("127.0.0.1", port)
            payload = f"session {i}".encode()
            writer.write(payload)
            await writer.drain()
            writer.close()
            assert await wait_for(lambda: len(client.results) == i + 1, timeout=2.0)
            assert sockets[i].received == payload
        assert all(result.reason is EndReason.TCP_EOF for result in client.results)
    finally:
        await client.close()
