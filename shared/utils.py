from __future__ import annotations
import ipaddress
import uuid
from typing import Optional, Tuple

# ========================================
#           ENDPOINT HELPERS
# ========================================
"""
Small helpers shared by the config validator, the CDN resolver and the
listeners to reason about WebSocket URLs and host:port strings.
"""

_WS_SCHEMES = ("ws://", "wss://")


def new_session_id() -> str:
    """Short random id used to tie together the log lines of one relay session."""
    return uuid.uuid4().hex[:8]


def is_ws_url(s: str) -> bool:
    """
    returns True if the string starts with ws:// or wss:// and names a host.
    """
    if not isinstance(s, str):
        return False
    for scheme in _WS_SCHEMES:
        if s.startswith(scheme):
            return bool(strip_ws_url(s))
    return False


def is_valid_port(port: object, *, allow_zero: bool = False) -> bool:
    """Port must be an int (not bool) between 1 and 65535; 0 only when asked for."""
    if isinstance(port, bool) or not isinstance(port, int):
        return False
    low = 0 if allow_zero else 1
    return low <= port <= 65535


def strip_ws_url(url: str) -> str:
    """
    Drop the ws:// or wss:// prefix and anything from the first '/' on.

    "wss://edge.example.com:8443/tunnel" -> "edge.example.com:8443"
    """
    host = url
    for scheme in _WS_SCHEMES:
        if host.startswith(scheme):
            host = host[len(scheme):]
            break
    slash = host.find("/")
    if slash != -1:
        host = host[:slash]
    return host


def split_host_port(hostport: str, default_port: int) -> Tuple[str, int]:
    """
    Accepts 'host', 'host:port', '[v6]' or '[v6]:port'.

    - A bare IPv6 literal without brackets is returned whole with the default port.
    - Raises ValueError when the port part is not a valid port number.
    """
    if hostport.startswith("["):
        end = hostport.find("]")
        if end == -1:
            raise ValueError(f"unterminated IPv6 literal in {hostport!r}")
        host = hostport[1:end]
        rest = hostport[end + 1:]
        if not rest:
            return host, default_port
        if not rest.startswith(":"):
            raise ValueError(f"garbage after IPv6 literal in {hostport!r}")
        port_s = rest[1:]
    elif hostport.count(":") == 1:
        host, port_s = hostport.split(":", 1)
    else:
        return hostport, default_port

    port = int(port_s)
    if not is_valid_port(port):
        raise ValueError(f"port out of range in {hostport!r}")
    return host, port


def ws_probe_target(url: str) -> Tuple[str, int]:
    """
    Host and port a WebSocket URL will actually dial: port 443 for wss://,
    80 otherwise, unless the URL names a port explicitly.
    """
    default_port = 443 if url.startswith("wss://") else 80
    return split_host_port(strip_ws_url(url), default_port)


def format_address(address: Optional[Tuple]) -> str:
    """Render a socket address tuple as host:port ([v6]:port for IPv6)."""
    if not address:
        return "?"
    host, port = address[0], address[1]
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass
    return f"{host}:{port}"
