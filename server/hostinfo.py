"""
Startup report of the addresses the server can be reached on.

Lists the machine's non-loopback IPv4/IPv6 addresses and asks two public
echo services for the public IPv4/IPv6. Purely informational: lookup
failures are reported inline and never stop the server.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from typing import Dict, List, Optional

import httpx

from shared.log import get_logger

logger = get_logger(__name__)

PUBLIC_IPV4_URL = "https://api.ipify.org"
PUBLIC_IPV6_URL = "https://api64.ipify.org"
PUBLIC_IP_TIMEOUT = 4.0


def local_addresses() -> Dict[str, List[str]]:
    """Non-loopback addresses of this host, grouped as {"IPv4": [...], "IPv6": [...]}."""
    found: Dict[str, List[str]] = {"IPv4": [], "IPv6": []}
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None)
    except OSError as e:
        logger.debug(f"getaddrinfo on own hostname failed: {e}")
        infos = []

    candidates = [info[4][0] for info in infos]
    # the address the default route leaves from; connect() on UDP sends nothing
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
            probe.connect(("192.0.2.1", 9))
            candidates.append(probe.getsockname()[0])
    except OSError:
        pass

    for raw in candidates:
        try:
            ip = ipaddress.ip_address(raw.split("%", 1)[0])
        except ValueError:
            continue
        if ip.is_loopback or ip.is_unspecified:
            continue
        key = "IPv4" if ip.version == 4 else "IPv6"
        if str(ip) not in found[key]:
            found[key].append(str(ip))
    return found


async def fetch_public_ip(url: str, *, timeout: float = PUBLIC_IP_TIMEOUT,
                          transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """Body of the echo service, or a 'lookup failed: ...' string."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text.strip()
    except httpx.HTTPError as e:
        return f"lookup failed: {e!r}"


async def report_host_addresses(*, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Dict[str, List[str]]]:
    """Log local and public addresses; returns what was logged."""
    local = local_addresses()
    logger.info("[Local IP]")
    for family, addresses in local.items():
        for address in addresses:
            logger.info(f"  {family}: {address}")

    v4, v6 = await asyncio.gather(
        fetch_public_ip(PUBLIC_IPV4_URL, transport=transport),
        fetch_public_ip(PUBLIC_IPV6_URL, transport=transport),
    )
    logger.info("[Public IP]")
    logger.info(f"  IPv4: {v4}")
    logger.info(f"  IPv6: {v6}")
    return {"local": local, "public": {"IPv4": [v4], "IPv6": [v6]}}
