"""Tests for the configuration schema."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from lanlink.config import LanLinkConfig


class TestDefaults:
    def test_defaults(self):
        c = LanLinkConfig()
        assert c.host == "0.0.0.0"
        assert c.port == 12345
        assert c.request_timeout_ms == 5000
        assert c.crypto.password == "password"
        assert c.crypto.salt == "salt"
        assert c.crypto.iterations == 5000
        assert c.crypto.key == ""
        assert c.pairing.ttl_ms == 8 * 60 * 60 * 1000
        assert c.pairing.key_prefix == "pairingInfo"
        assert c.pairing.sweep_interval == 300
        assert c.storage_path is None

    def test_storage_path_expanded(self):
        c = LanLinkConfig(pairing={"storage_path": "~/lanlink/pairings.json"})
        assert c.storage_path == Path.home() / "lanlink" / "pairings.json"


class TestParsing:
    def test_camel_case_keys(self):
        c = LanLinkConfig(
            crypto={"password": "p", "iterations": 10},
            pairing={"ttlMs": 1000, "keyPrefix": "peers", "deviceName": "Hub"},
        )
        assert c.crypto.iterations == 10
        assert c.pairing.ttl_ms == 1000
        assert c.pairing.key_prefix == "peers"
        assert c.pairing.device_name == "Hub"

    def test_snake_case_keys(self):
        c = LanLinkConfig(pairing={"ttl_ms": 5, "sweep_interval": 0})
        assert c.pairing.ttl_ms == 5
        assert c.pairing.sweep_interval == 0

    @pytest.mark.parametrize("kwargs", [
        {"request_timeout_ms": 0},
        {"crypto": {"iterations": 0}},
        {"pairing": {"ttl_ms": -1}},
    ])
    def test_rejects_non_positive(self, kwargs):
        with pytest.raises(ValidationError):
            LanLinkConfig(**kwargs)


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("LANLINK_PORT", "4000")
        monkeypatch.setenv("LANLINK_HOST", "127.0.0.1")
        c = LanLinkConfig()
        assert c.port == 4000
        assert c.host == "127.0.0.1"

    def test_nested_env(self, monkeypatch):
        monkeypatch.setenv("LANLINK_CRYPTO__PASSWORD", "from-env")
        monkeypatch.setenv("LANLINK_CRYPTO__ITERATIONS", "42")
        c = LanLinkConfig()
        assert c.crypto.password == "from-env"
        assert c.crypto.iterations == 42
