import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

DEFAULT_PORT = 8080


class ConfigError(Exception):
    pass


def port_from_env(environ: Optional[Mapping[str, str]] = None, default: int = DEFAULT_PORT) -> int:
    if environ is None:
        environ = os.environ
    raw = environ.get("PORT", "").strip()
    if not raw:
        return default
    try:
        port = int(raw)
    except ValueError:
        return default
    if not 0 <= port <= 65535:
        return default
    return port


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    root: str = "public"
    index: str = "index.html"
    workers: int = 4
    queue_size: int = 1000
    backlog: int = 128
    recv_timeout: float = 2.0
    header_timeout: float = 10.0
    accept_timeout: float = 1.0
    max_header_bytes: int = 65536
    chunk_size: int = 64 * 1024
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Config":
        overrides = {k: v for k, v in overrides.items() if v is not None}
        overrides.setdefault("port", port_from_env(environ))
        config = cls(**overrides)
        return replace(config, root=os.path.realpath(config.root))

    @property
    def index_path(self) -> str:
        return os.path.join(self.root, self.index)

    def validate(self) -> None:
        """Fail before binding if there is nothing sensible to serve."""
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port {self.port} is out of range 0-65535")
        if not os.path.isdir(self.root):
            raise ConfigError(f"asset root {self.root!r} is not a directory")
        if not os.path.isfile(self.index_path):
            raise ConfigError(f"index document {self.index_path!r} not found")
        if not os.access(self.index_path, os.R_OK):
            raise ConfigError(f"index document {self.index_path!r} is not readable")
