"""Tests for ProxyMetrics and the debug metrics endpoint."""

from __future__ import annotations

import threading

import httpx
from starlette.testclient import TestClient

from conftest import add_entry, json_stream, root_entry, stats_entry
from user_mapping_proxy.config import load_config
from user_mapping_proxy.proxy.metrics import ProxyMetrics
from user_mapping_proxy.proxy.server import create_app


class TestProxyMetrics:
    def test_counters_by_tags(self):
        m = ProxyMetrics()
        m.incr("add_handler_response_codes", code=200)
        m.incr("add_handler_response_codes", code=200)
        m.incr("add_handler_response_codes", code=500)
        assert m.count("add_handler_response_codes", code=200) == 2
        assert m.count("add_handler_response_codes", code=500) == 1
        assert m.count("add_handler_response_codes", code=404) == 0

    def test_untagged(self):
        m = ProxyMetrics()
        m.incr("pin_rm_handler_no_args", amount=3)
        assert m.count("pin_rm_handler_no_args") == 3

    def test_events_sequence(self):
        m = ProxyMetrics()
        assert m.record("add", size=3) == 0
        assert m.record("pin_rm", requested=1, forwarded=1) == 1
        events = m.recent()
        assert [e["seq"] for e in events] == [0, 1]
        assert events[0]["size"] == 3
        assert "ts" in events[0]
        assert [e["type"] for e in m.recent(after=0)] == ["pin_rm"]

    def test_event_ring_bounded(self):
        m = ProxyMetrics(max_events=5)
        for i in range(12):
            m.record("add", i=i)
        assert [e["i"] for e in m.recent()] == [7, 8, 9, 10, 11]

    def test_recent_returns_copies(self):
        m = ProxyMetrics()
        m.record("add", size=3)
        m.recent()[0]["size"] = 99
        assert m.recent()[0]["size"] == 3

    def test_thread_safe(self):
        m = ProxyMetrics()

        def worker():
            for _ in range(1000):
                m.incr("hits")

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert m.count("hits") == 8000

    def test_snapshot(self):
        m = ProxyMetrics()
        m.incr("b")
        m.incr("a", code=1)
        snap = m.snapshot()
        assert list(snap["counters"]) == ["a{code=1}", "b"]
        assert snap["uptime_s"] >= 0
        assert snap["recent_events"] == []


class TestDebugEndpoint:
    def test_metrics_exposed(self, client, backend):
        backend.respond("/api/v0/add", json_stream(add_entry("a.txt", "QmA", 3)))
        client.post("/api/v0/add", auth=("alice", ""), content=b"x")
        client.post("/api/v0/pin/ls")

        snap = client.get("/debug/metrics").json()
        assert snap["counters"]["add_handler_response_codes{code=200}"] == 1
        assert snap["counters"]["error_responses{code=401,path=/api/v0/pin/ls}"] == 1
        assert {e["type"] for e in snap["recent_events"]} == {"add", "error"}

    def test_events_carry_no_identities(self, client, backend):
        backend.respond("/api/v0/add", json_stream(add_entry("secret.pdf", "QmAlicePrivate", 3)))
        backend.respond("/api/v0/dag/import", json_stream(root_entry("bafyAlicePrivate"), stats_entry(1, 10)))
        client.post("/api/v0/add", auth=("alice", ""), content=b"x")
        client.post("/api/v0/dag/import", auth=("alice", ""), content=b"car")
        client.post("/api/v0/pin/rm?arg=QmAlicePrivate", auth=("alice", ""))
        client.post("/api/v0/pin/rm?arg=QmAlicePrivate", auth=("alice", ""))

        resp = client.get("/debug/metrics")
        assert resp.status_code == 200
        types = {e["type"] for e in resp.json()["recent_events"]}
        assert {"add", "dag_import", "pin_rm", "error"} <= types
        for secret in ("alice", "QmAlicePrivate", "bafyAlicePrivate", "secret.pdf"):
            assert secret not in resp.text

    def test_invalid_param_series_bounded(self, client):
        for name in ("pin", "foo", "x1", "zzz"):
            client.post(f"/api/v0/add?{name}=1", auth=("alice", ""), content=b"x")
        counters = client.get("/debug/metrics").json()["counters"]
        invalid = {k: v for k, v in counters.items() if k.startswith("add_handler_invalid_query_param")}
        assert invalid == {"add_handler_invalid_query_param{param=other}": 4}

    def test_metrics_disabled(self, store, backend):
        config = load_config(config_dict={
            "target": "http://ipfs.test:5001", "debug": {"metrics": False},
        })
        app = create_app(
            config, store,
            client=httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)),
        )
        with TestClient(app) as client:
            assert client.get("/debug/metrics").status_code == 404

    def test_unknown_route(self, client, backend):
        assert client.post("/api/v0/cat?arg=QmA", auth=("alice", "")).status_code in (404, 405)
        assert backend.requests == []
