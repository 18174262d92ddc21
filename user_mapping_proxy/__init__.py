"""user-mapping-proxy: per-user ownership of content on a shared storage node."""

from .config import load_config
from .types import (
    AuthenticationError,
    BackendError,
    Content,
    DecodeError,
    OwnershipError,
    ProxyConfig,
    ProxyError,
    StoreError,
    UserHashPair,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "load_config",
    "AuthenticationError",
    "BackendError",
    "Content",
    "DecodeError",
    "OwnershipError",
    "ProxyConfig",
    "ProxyError",
    "StoreError",
    "UserHashPair",
    "ValidationError",
]
