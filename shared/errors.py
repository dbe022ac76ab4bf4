from __future__ import annotations
from typing import Sequence


class BridgeError(Exception):
    """Base class for wsbridge failures that callers are expected to handle."""
    pass
class ConfigError(BridgeError):
    """Raised when a configuration file cannot be read, parsed or validated."""
    pass
class ListenError(BridgeError):
    """Raised when the mandatory listening socket cannot be bound."""
    pass
class PortsExhaustedError(ListenError):
    """Raised when every candidate port of a fallback search is unavailable."""

    def __init__(self, start_port: int, max_tries: int, errors: Sequence[OSError] = ()):
        self.start_port = start_port
        self.max_tries = max_tries
        self.errors = list(errors)
        last = start_port + max_tries - 1
        super().__init__(f"no free port in range {start_port}-{last} ({max_tries} tries)")

    @property
    def tried_ports(self) -> list[int]:
        return list(range(self.start_port, self.start_port + self.max_tries))
class GeoLookupError(BridgeError):
    """Raised when the geolocation service returns something unusable."""
    pass
