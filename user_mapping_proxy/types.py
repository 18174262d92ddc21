"""Core data types and error taxonomy for user-mapping-proxy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


# ---------------------------------------------------------------------------
# Ownership records
# ---------------------------------------------------------------------------

@dataclass
class Content:
    """One (user, hash) ownership record.

    ``removed`` is None while the content is pinned for ``user``.
    """
    user: str
    hash: str
    name: str = ""
    size: int = 0
    created: datetime | None = None
    removed: datetime | None = None

    @property
    def active(self) -> bool:
        return self.removed is None


@dataclass(frozen=True)
class UserHashPair:
    user: str
    hash: str


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProxyError(Exception):
    """Base class for failures that map to an HTTP status for the caller."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ProxyError):
    status_code = 401


class ValidationError(ProxyError):
    status_code = 400


class OwnershipError(ProxyError):
    status_code = 404

    def __init__(self, hashes: list[str]) -> None:
        super().__init__(f"not pinned or pinned indirectly: {', '.join(hashes)}")
        self.hashes = hashes


class BackendError(ProxyError):
    """The backend failed; ``status_code`` is what the caller receives."""
    status_code = 502


class DecodeError(ProxyError):
    status_code = 500


class StoreError(ProxyError):
    status_code = 500


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5001


@dataclass
class UpstreamConfig:
    timeout: float = 120.0
    connect_timeout: float = 10.0


@dataclass
class StorageConfig:
    sqlite_path: str = ".user-mapping-proxy/content.db"


@dataclass
class LogConfig:
    level: str = "info"
    output: str = ""  # empty = stderr


@dataclass
class DebugConfig:
    metrics: bool = True


@dataclass
class ProxyConfig:
    target: str = ""
    server: ServerConfig = field(default_factory=ServerConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: DebugConfig = field(default_factory=DebugConfig)
