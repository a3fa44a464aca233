import configparser
import os
from dataclasses import dataclass

from hello_overlay.protocol import Name


class ConfigError(ValueError):
    """Invalid run settings, detected before the event loop starts."""


def load_config():
    config = configparser.ConfigParser()
    config_path = os.environ.get("HELLO_CONFIG") or os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config.ini"
    )
    config.read(config_path)
    return config


config = load_config()
FORWARDER_SOCKET_PATH = os.environ.get(
    "HELLO_FORWARDER_SOCKET",
    config.get("overlay", "socket_path", fallback="/tmp/hello-forwarder.sock"),
)
DEFAULT_INTERVAL = config.getint("client", "interval_ms", fallback=1000) / 1000
REQUEST_LIFETIME = config.getint("client", "lifetime_ms", fallback=1000) / 1000
_freshness_ms = config.getint("server", "freshness_ms", fallback=1000)
FRESHNESS_PERIOD = _freshness_ms / 1000 if _freshness_ms >= 0 else None
CONTENT = config.get("server", "content", fallback="Hello World!!!")
SIGNING_KEY = config.get("security", "key", fallback="")
NONCE_POOL_CAPACITY = 1000


def _validate_common(prefix, max_count):
    if not prefix or not Name.from_uri(prefix).components:
        raise ConfigError("the NAME-PREFIX argument is required and cannot be empty")
    if max_count is not None and max_count < 0:
        raise ConfigError("the argument for option '--count' cannot be negative")


@dataclass
class ClientConfig:
    prefix: str
    max_count: int | None = None
    interval: float = DEFAULT_INTERVAL
    lifetime: float = REQUEST_LIFETIME

    def validate(self) -> "ClientConfig":
        _validate_common(self.prefix, self.max_count)
        if self.interval <= 0:
            raise ConfigError("the argument for option '--interval' must be positive")
        if self.lifetime <= 0:
            raise ConfigError("request lifetime must be positive")
        return self


@dataclass
class ServerConfig:
    prefix: str
    max_count: int | None = None
    quiet: bool = False
    freshness_period: float | None = FRESHNESS_PERIOD
    content: str = CONTENT

    def validate(self) -> "ServerConfig":
        _validate_common(self.prefix, self.max_count)
        return self
