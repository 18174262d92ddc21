"""Tests for configuration loading and validation."""

import json

import pytest

from user_mapping_proxy.config import load_config, validate_config

_ENV_VARS = (
    "PROXY_ADDRESS", "PROXY_HOST", "PROXY_PORT", "PROXY_TARGET",
    "PROXY_DATABASE_PATH", "PROXY_LOG_LEVEL", "PROXY_LOG_FILE", "PROXY_DEBUG_METRICS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config(config_dict={})
    assert config.target == ""
    assert config.server.host == "127.0.0.1"
    assert config.server.port == 5001
    assert config.storage.sqlite_path == ".user-mapping-proxy/content.db"
    assert config.log.level == "info"
    assert config.debug.metrics is True


def test_from_dict():
    config = load_config(config_dict={
        "target": "http://ipfs:5001/",
        "server": {"host": "0.0.0.0", "port": 8080},
        "upstream": {"timeout": 30, "connect_timeout": 2},
        "storage": {"sqlite_path": "/data/content.db"},
        "log": {"level": "DEBUG", "output": "/var/log/proxy.log"},
        "debug": {"metrics": False},
    })
    assert config.target == "http://ipfs:5001"
    assert config.server.host == "0.0.0.0"
    assert config.server.port == 8080
    assert config.upstream.timeout == 30.0
    assert config.upstream.connect_timeout == 2.0
    assert config.storage.sqlite_path == "/data/content.db"
    assert config.log.level == "debug"
    assert config.log.output == "/var/log/proxy.log"
    assert config.debug.metrics is False


def test_yaml_file(tmp_path):
    path = tmp_path / "user-mapping-proxy.yaml"
    path.write_text("target: http://ipfs:5001\nserver:\n  port: 9000\n")
    config = load_config(config_path=path)
    assert config.target == "http://ipfs:5001"
    assert config.server.port == 9000


def test_json_file(tmp_path):
    path = tmp_path / "proxy.json"
    path.write_text(json.dumps({"target": "http://ipfs:5001"}))
    assert load_config(config_path=path).target == "http://ipfs:5001"


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(config_path=tmp_path / "nope.yaml")


def test_discovery(tmp_path, monkeypatch):
    (tmp_path / "user-mapping-proxy.yml").write_text("target: http://found:5001\n")
    sub = tmp_path / "a" / "b"
    sub.mkdir(parents=True)
    monkeypatch.chdir(sub)
    monkeypatch.setenv("HOME", str(tmp_path))
    assert load_config().target == "http://found:5001"


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "proxy.yaml"
    path.write_text("target: http://file:5001\nserver:\n  port: 9000\n")
    monkeypatch.setenv("PROXY_TARGET", "http://env:5001")
    monkeypatch.setenv("PROXY_PORT", "7000")
    monkeypatch.setenv("PROXY_DATABASE_PATH", "/tmp/env.db")
    monkeypatch.setenv("PROXY_LOG_LEVEL", "WARNING")
    monkeypatch.setenv("PROXY_DEBUG_METRICS", "false")
    config = load_config(config_path=path)
    assert config.target == "http://env:5001"
    assert config.server.port == 7000
    assert config.storage.sqlite_path == "/tmp/env.db"
    assert config.log.level == "warning"
    assert config.debug.metrics is False


@pytest.mark.parametrize("address, host, port", [
    (":5002", "127.0.0.1", 5002),
    ("0.0.0.0:5003", "0.0.0.0", 5003),
    ("example.internal", "example.internal", 5001),
])
def test_proxy_address(tmp_path, monkeypatch, address, host, port):
    path = tmp_path / "proxy.yaml"
    path.write_text("target: http://ipfs:5001\n")
    monkeypatch.setenv("PROXY_ADDRESS", address)
    config = load_config(config_path=path)
    assert config.server.host == host
    assert config.server.port == port


def test_env_not_applied_to_dict(monkeypatch):
    monkeypatch.setenv("PROXY_TARGET", "http://env:5001")
    assert load_config(config_dict={"target": "http://dict:5001"}).target == "http://dict:5001"


class TestValidateConfig:
    def test_valid(self):
        assert validate_config(load_config(config_dict={"target": "http://ipfs:5001"})) == []

    def test_missing_target(self):
        errors = validate_config(load_config(config_dict={}))
        assert any("target" in e for e in errors)

    def test_bad_target(self):
        errors = validate_config(load_config(config_dict={"target": "ipfs:5001"}))
        assert any("http(s) URL" in e for e in errors)

    def test_bad_port(self):
        config = load_config(config_dict={"target": "http://ipfs:5001", "server": {"port": 0}})
        assert any("server.port" in e for e in validate_config(config))

    def test_bad_log_level(self):
        config = load_config(config_dict={"target": "http://ipfs:5001", "log": {"level": "loud"}})
        assert any("log.level" in e for e in validate_config(config))

    def test_bad_timeout(self):
        config = load_config(config_dict={
            "target": "http://ipfs:5001", "upstream": {"timeout": 0},
        })
        assert validate_config(config) == ["upstream.timeout must be > 0"]
