"""Shared fixtures for user-mapping-proxy tests."""

from __future__ import annotations

import json
import tempfile
from pathlib import Path

import httpx
import pytest

from user_mapping_proxy.config import load_config
from user_mapping_proxy.proxy.metrics import ProxyMetrics
from user_mapping_proxy.proxy.server import create_app
from user_mapping_proxy.storage.sqlite import SQLiteStore
from user_mapping_proxy.types import ProxyConfig

TARGET = "http://ipfs.test:5001"


def json_stream(*objects: dict) -> bytes:
    """Concatenated JSON objects, newline separated, as the backend emits them."""
    return b"".join(json.dumps(o).encode() + b"\n" for o in objects)


def add_entry(name: str, hash: str, size: int | str) -> dict:
    return {"Name": name, "Hash": hash, "Size": str(size)}


def root_entry(cid: str, pin_error: str = "") -> dict:
    return {"Root": {"Cid": {"/": cid}, "PinErrorMsg": pin_error}}


def stats_entry(blocks: int, size: int) -> dict:
    return {"Stats": {"BlockCount": blocks, "BlockBytesCount": size}}


class FakeBackend:
    """In-memory stand-in for the storage node API, served via httpx.MockTransport.

    Canned responses are registered per path. ``/api/v0/pin/rm`` answers like
    the real node by default and remembers every unpinned hash.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.bodies: list[bytes] = []
        self.unpinned: list[str] = []
        self.unreachable = False
        self._canned: dict[str, tuple[int, bytes, dict[str, str]]] = {}

    def respond(
        self,
        path: str,
        body: bytes = b"",
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self._canned[path] = (
            status, body, headers or {"content-type": "application/json"},
        )

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        self.bodies.append(request.content)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path in self._canned:
            status, body, headers = self._canned[path]
            return httpx.Response(status, content=body, headers=headers)

        if path == "/api/v0/pin/rm":
            args = request.url.params.get_list("arg")
            self.unpinned.extend(args)
            return httpx.Response(200, json={"Pins": args})

        return httpx.Response(404, text="404 page not found")


@pytest.fixture
def tmp_store_dir():
    with tempfile.TemporaryDirectory() as d:
        yield Path(d)


@pytest.fixture
def tmp_sqlite_db(tmp_store_dir):
    return tmp_store_dir / "content.db"


@pytest.fixture
def store(tmp_sqlite_db):
    s = SQLiteStore(db_path=tmp_sqlite_db)
    yield s
    s.close()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def proxy_config() -> ProxyConfig:
    return load_config(config_dict={"target": TARGET})


@pytest.fixture
def metrics() -> ProxyMetrics:
    return ProxyMetrics()


@pytest.fixture
def app(proxy_config, store, backend, metrics):
    client = httpx.AsyncClient(transport=httpx.MockTransport(backend.handler))
    return create_app(proxy_config, store, client=client, metrics=metrics)


@pytest.fixture
def client(app):
    """TestClient for the proxy app, lifespan included."""
    from starlette.testclient import TestClient
    with TestClient(app) as c:
        yield c
