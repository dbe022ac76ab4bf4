"""
YAML configuration for both faces of the bridge.

Handles loading of:
- client.yaml (TCP listener -> WebSocket dialer)
- config.yaml (WebSocket listener -> TCP backend)

A missing file is created with defaults so a first run leaves something the
operator can edit. Missing keys fall back to their defaults; values of the
wrong type are a ConfigError.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Type, TypeVar, Union

import yaml

from shared.errors import ConfigError
from shared.log import get_logger
from shared.utils import is_valid_port, is_ws_url

logger = get_logger(__name__)

DEFAULT_CLIENT_CONFIG_PATH = Path("client.yaml")
DEFAULT_SERVER_CONFIG_PATH = Path("config.yaml")


@dataclass(frozen=True)
class ClientConfig:
    local_port: int = 25566
    websocket_url: str = "ws://127.0.0.1:12381"
    reconnect_delay_sec: float = 3
    max_retries: int = 5
    resolve_cdn: bool = True
    listen_host: str = "0.0.0.0"

    def validate(self) -> None:
        if not is_valid_port(self.local_port, allow_zero=True):
            raise ConfigError(f"local_port must be a port number, got {self.local_port!r}")
        if not is_ws_url(self.websocket_url):
            raise ConfigError(f"websocket_url must start with ws:// or wss://, got {self.websocket_url!r}")
        if isinstance(self.reconnect_delay_sec, bool) or not isinstance(self.reconnect_delay_sec, (int, float)) \
                or self.reconnect_delay_sec < 0:
            raise ConfigError(f"reconnect_delay_sec must be a non-negative number, got {self.reconnect_delay_sec!r}")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ConfigError(f"max_retries must be an integer, got {self.max_retries!r}")
        if not isinstance(self.resolve_cdn, bool):
            raise ConfigError(f"resolve_cdn must be true or false, got {self.resolve_cdn!r}")
        if not isinstance(self.listen_host, str) or not self.listen_host:
            raise ConfigError(f"listen_host must be a non-empty string, got {self.listen_host!r}")


@dataclass(frozen=True)
class ServerConfig:
    ws_port: int = 8080
    tcp_host: str = "localhost"
    tcp_port: int = 25565
    listen_host: str = "0.0.0.0"

    @property
    def backend(self) -> str:
        return f"{self.tcp_host}:{self.tcp_port}"

    def validate(self) -> None:
        if not is_valid_port(self.ws_port, allow_zero=True):
            raise ConfigError(f"ws_port must be a port number, got {self.ws_port!r}")
        if not isinstance(self.tcp_host, str) or not self.tcp_host:
            raise ConfigError(f"tcp_host must be a non-empty string, got {self.tcp_host!r}")
        if not is_valid_port(self.tcp_port):
            raise ConfigError(f"tcp_port must be a port number, got {self.tcp_port!r}")
        if not isinstance(self.listen_host, str) or not self.listen_host:
            raise ConfigError(f"listen_host must be a non-empty string, got {self.listen_host!r}")


ConfigT = TypeVar("ConfigT", ClientConfig, ServerConfig)


def write_default_config(path: Path, config_cls: Type[ConfigT]) -> ConfigT:
    """Write the defaults of config_cls to path as YAML and return them."""
    config = config_cls()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(asdict(config), f, sort_keys=False)
    return config


def _load(path: Union[str, Path], config_cls: Type[ConfigT]) -> ConfigT:
    path = Path(path)
    if not path.exists():
        logger.warning(f"No {path.name} found; generating default configuration")
        try:
            config = write_default_config(path, config_cls)
        except OSError as e:
            raise ConfigError(f"cannot create default config {path}: {e}") from e
        logger.info(f"Default configuration written to {path}, review it before the next run")
        return config

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")

    return config_from_mapping(data, config_cls, source=str(path))


def config_from_mapping(data: Dict[str, Any], config_cls: Type[ConfigT], *, source: str = "<mapping>") -> ConfigT:
    """Build and validate a config object, ignoring (and reporting) unknown keys."""
    known = {f.name for f in fields(config_cls)}
    unknown = sorted(str(k) for k in data if k not in known)
    if unknown:
        logger.warning(f"Ignoring unknown keys in {source}: {', '.join(unknown)}")

    config = config_cls(**{k: v for k, v in data.items() if k in known})
    config.validate()
    return config


def load_client_config(path: Union[str, Path] = DEFAULT_CLIENT_CONFIG_PATH) -> ClientConfig:
    return _load(path, ClientConfig)


def load_server_config(path: Union[str, Path] = DEFAULT_SERVER_CONFIG_PATH) -> ServerConfig:
    return _load(path, ServerConfig)
