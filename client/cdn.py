"""
Diagnostic CDN resolution for the client's WebSocket endpoint.

The hostname in websocket_url often sits behind DNS load balancing or a CDN.
To show the operator which edge is actually used, the resolver opens a short
TCP probe to the endpoint and reads the peer address off the socket, then
asks a geolocation API where that IP lives.

Nothing here is on the relay path. Every failure is logged and swallowed.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from shared.errors import GeoLookupError
from shared.log import get_logger
from shared.utils import ws_probe_target

logger = get_logger(__name__)

GEO_API_URL = "https://ipapi.co/{ip}/json"
PROBE_TIMEOUT = 2.0
GEO_TIMEOUT = 3.0


@dataclass(frozen=True)
class GeoInfo:
    city: str = ""
    region: str = ""
    country: str = ""
    org: str = ""
    asn: str = ""
    timezone: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @classmethod
    def from_json(cls, data: Any) -> "GeoInfo":
        if not isinstance(data, dict):
            raise GeoLookupError(f"expected a JSON object, got {type(data).__name__}")
        if data.get("error"):
            # ipapi.co answers 200 with {"error": true, "reason": ...} for reserved/rate-limited lookups
            raise GeoLookupError(str(data.get("reason") or "lookup refused"))

        def text(key: str) -> str:
            value = data.get(key)
            return "" if value is None else str(value)

        def number(key: str) -> Optional[float]:
            value = data.get(key)
            if value is None:
                return None
            try:
                return float(value)
            except (TypeError, ValueError):
                raise GeoLookupError(f"{key} is not a number: {value!r}")

        return cls(
            city=text("city"),
            region=text("region"),
            country=text("country_name"),
            org=text("org"),
            asn=text("asn"),
            timezone=text("timezone"),
            latitude=number("latitude"),
            longitude=number("longitude"),
        )

    def summary(self) -> str:
        return f"{self.country}, {self.region}, {self.city} | ASN: {self.asn} | org: {self.org} | tz: {self.timezone}"


@dataclass(frozen=True)
class CdnReport:
    host: str
    port: int
    ip: str
    geo: Optional[GeoInfo] = None


async def probe_remote_ip(host: str, port: int, timeout: float = PROBE_TIMEOUT) -> str:
    """Connect to host:port and return the IP the connection actually reached."""
    _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    try:
        peer = writer.get_extra_info("peername")
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
    if not peer:
        raise OSError(f"no peer address for {host}:{port}")
    return peer[0]


async def query_geo(ip: str, *, timeout: float = GEO_TIMEOUT,
                    transport: Optional[httpx.AsyncBaseTransport] = None) -> GeoInfo:
    """Look an IP up on the geolocation API."""
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(GEO_API_URL.format(ip=ip))
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as e:
            raise GeoLookupError(f"response is not JSON: {e}") from e
    return GeoInfo.from_json(data)


class CdnResolver:
    """Resolves and geolocates the edge behind a WebSocket URL, for the logs only."""

    def __init__(
        self,
        websocket_url: str,
        *,
        probe_timeout: float = PROBE_TIMEOUT,
        geo_timeout: float = GEO_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.websocket_url = websocket_url
        self.probe_timeout = probe_timeout
        self.geo_timeout = geo_timeout
        self.transport = transport

    async def resolve(self, session_id: Optional[str] = None) -> Optional[CdnReport]:
        """Run one resolution. Returns None (after logging why) on any failure."""
        extra: Dict[str, Any] = {"session_id": session_id} if session_id else {}
        try:
            host, port = ws_probe_target(self.websocket_url)
        except ValueError as e:
            logger.warning(f"[CDN] cannot derive probe address from {self.websocket_url}: {e}", extra=extra)
            return None

        try:
            ip = await probe_remote_ip(host, port, timeout=self.probe_timeout)
        except (OSError, UnicodeError, asyncio.TimeoutError) as e:
            logger.warning(f"[CDN] cannot connect to {host}:{port}: {e!r}", extra=extra)
            return None
        logger.info(f"[CDN] {host}:{port} resolved to {ip}", extra=extra)

        try:
            geo = await query_geo(ip, timeout=self.geo_timeout, transport=self.transport)
        except (httpx.HTTPError, httpx.InvalidURL, GeoLookupError) as e:
            logger.warning(f"[CDN] geolocation lookup for {ip} failed: {e!r}", extra=extra)
            return CdnReport(host=host, port=port, ip=ip)
        logger.info(f"[CDN] {ip}: {geo.summary()}", extra=extra)
        return CdnReport(host=host, port=port, ip=ip, geo=geo)
