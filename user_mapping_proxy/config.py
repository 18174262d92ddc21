"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .types import (
    DebugConfig,
    LogConfig,
    ProxyConfig,
    ServerConfig,
    StorageConfig,
    UpstreamConfig,
)

CONFIG_FILENAMES = [
    "user-mapping-proxy.yaml",
    "user-mapping-proxy.yml",
    "user-mapping-proxy.json",
]

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")

_TRUTHY = {"1", "true", "yes", "on"}


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Overlay PROXY_* environment variables onto a raw config dict."""
    raw = dict(raw)
    server = dict(raw.get("server") or {})
    storage = dict(raw.get("storage") or {})
    log = dict(raw.get("log") or {})
    debug = dict(raw.get("debug") or {})

    address = os.environ.get("PROXY_ADDRESS")
    if address:
        # ":5001" or "0.0.0.0:5001"
        host, sep, port = address.rpartition(":")
        if not sep:
            host, port = port, ""
        if host:
            server["host"] = host
        if port:
            server["port"] = port
    if os.environ.get("PROXY_HOST"):
        server["host"] = os.environ["PROXY_HOST"]
    if os.environ.get("PROXY_PORT"):
        server["port"] = os.environ["PROXY_PORT"]
    if os.environ.get("PROXY_TARGET"):
        raw["target"] = os.environ["PROXY_TARGET"]
    if os.environ.get("PROXY_DATABASE_PATH"):
        storage["sqlite_path"] = os.environ["PROXY_DATABASE_PATH"]
    if os.environ.get("PROXY_LOG_LEVEL"):
        log["level"] = os.environ["PROXY_LOG_LEVEL"]
    if os.environ.get("PROXY_LOG_FILE"):
        log["output"] = os.environ["PROXY_LOG_FILE"]
    if os.environ.get("PROXY_DEBUG_METRICS"):
        debug["metrics"] = os.environ["PROXY_DEBUG_METRICS"].lower() in _TRUTHY

    raw["server"] = server
    raw["storage"] = storage
    raw["log"] = log
    raw["debug"] = debug
    return raw


def _build_config(raw: dict[str, Any]) -> ProxyConfig:
    """Build a ProxyConfig from a raw dict."""
    server_raw = raw.get("server") or {}
    upstream_raw = raw.get("upstream") or {}
    storage_raw = raw.get("storage") or {}
    log_raw = raw.get("log") or {}
    debug_raw = raw.get("debug") or {}

    return ProxyConfig(
        target=str(raw.get("target", "")).rstrip("/"),
        server=ServerConfig(
            host=server_raw.get("host", "127.0.0.1"),
            port=int(server_raw.get("port", 5001)),
        ),
        upstream=UpstreamConfig(
            timeout=float(upstream_raw.get("timeout", 120.0)),
            connect_timeout=float(upstream_raw.get("connect_timeout", 10.0)),
        ),
        storage=StorageConfig(
            sqlite_path=storage_raw.get("sqlite_path", ".user-mapping-proxy/content.db"),
        ),
        log=LogConfig(
            level=str(log_raw.get("level", "info")).lower(),
            output=log_raw.get("output", "") or "",
        ),
        debug=DebugConfig(
            metrics=bool(debug_raw.get("metrics", True)),
        ),
    )


def validate_config(config: ProxyConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if not config.target:
        errors.append("target must be set to the backend API base URL")
    else:
        parsed = urlparse(config.target)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"target must be an http(s) URL, got '{config.target}'")

    if not 0 < config.server.port < 65536:
        errors.append(f"server.port must be in 1-65535, got {config.server.port}")

    if config.log.level not in LOG_LEVELS:
        errors.append(
            f"log.level must be one of {', '.join(LOG_LEVELS)}, got '{config.log.level}'"
        )

    if config.upstream.timeout <= 0:
        errors.append("upstream.timeout must be > 0")
    if config.upstream.connect_timeout <= 0:
        errors.append("upstream.connect_timeout must be > 0")

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ProxyConfig:
    """Load config from dict, explicit path, or auto-discover.

    Environment variables are applied on top of file values, but not on top
    of an explicit ``config_dict``.
    """
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    raw: dict[str, Any] = {}
    if path is not None:
        if not path.is_file():
            raise FileNotFoundError(f"Config file not found: {path}")
        text = path.read_text()
        if path.suffix == ".json":
            raw = json.loads(text)
        else:
            raw = yaml.safe_load(text) or {}

    return _build_config(_env_overrides(raw))
