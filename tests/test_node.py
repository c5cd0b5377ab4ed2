"""End-to-end tests: two nodes paired over loopback UDP."""

from __future__ import annotations

import json

import pytest
import pytest_asyncio

from lanlink.config.schema import LanLinkConfig
from lanlink.net import cipher
from lanlink.net.clock import ManualClock
from lanlink.net.errors import (
    DeviceNotFoundError,
    EngineStoppedError,
    ExpiredCodeError,
    NotStartedError,
    RequestFailedError,
    RequestTimeoutError,
)
from lanlink.net.node import Node
from lanlink.net.pairing import PairingInfo
from lanlink.net.protocol import HttpResponse
from lanlink.net.router import Router
from lanlink.net.storage import JsonFileStorage, MemoryStorage

KEY = "0f" * 32
NOW = 1_700_000_000_000


def make_config(**overrides) -> LanLinkConfig:
    pairing = {"sweep_interval": 0, **overrides.pop("pairing", {})}
    return LanLinkConfig(
        host="127.0.0.1",
        port=0,
        request_timeout_ms=1000,
        crypto={"key": KEY},
        pairing=pairing,
        **overrides,
    )


def make_node(router: Router | None = None, clock=None, **overrides) -> Node:
    return Node(
        make_config(**overrides),
        router=router,
        get_local_address=lambda: "127.0.0.1",
        clock=clock,
    )


def server_router() -> Router:
    async def echo(req):
        return HttpResponse(200, {"got": req.body})

    def broken(req):
        raise RuntimeError("handler crashed")

    return (
        Router()
        .get("/ping", lambda req: HttpResponse(200, "pong"))
        .post("/echo", echo)
        .get("/missing", lambda req: HttpResponse(404, "nope"))
        .get("/boom", broken)
    )


@pytest_asyncio.fixture
async def pair():
    """Two started nodes that have scanned each other's codes."""
    a = make_node(router=server_router(), pairing={"device_name": "Alpha"})
    b = make_node(router=server_router(), pairing={"device_name": "Bravo"})
    await a.start()
    await b.start()
    await a.scan_code(b.pairing_code)
    await b.scan_code(a.pairing_code)
    yield a, b
    await a.stop()
    await b.stop()


# ---------------------------------------------------------------------------
# Lifecycle and pairing codes
# ---------------------------------------------------------------------------

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_builds_pairing_code(self):
        node = make_node()
        port = await node.start()
        try:
            assert port == node.port > 0
            info = json.loads(node.pairing_code)
            assert info["ipAddress"] == "127.0.0.1"
            assert info["port"] == port
            assert info["key"] == KEY
            assert info["extraData"] == {"deviceName": "Device: 127.0.0.1"}
        finally:
            await node.stop()
        assert node.port is None

    @pytest.mark.asyncio
    async def test_generate_code_before_start(self):
        with pytest.raises(NotStartedError):
            await make_node().generate_code()

    @pytest.mark.asyncio
    async def test_generate_code_with_metadata_and_ttl(self):
        clock = ManualClock(NOW)
        node = make_node(clock=clock, pairing={"ttl_ms": 1000, "device_name": "Kitchen"})
        await node.start()
        try:
            code = await node.generate_code({"model": "X1"})
            info = PairingInfo.from_json(code)
            assert info.expires_at == NOW + 1000
            assert info.metadata == {"deviceName": "Kitchen", "model": "X1"}
            assert node.pairing_code == code
        finally:
            await node.stop()

    @pytest.mark.asyncio
    async def test_key_derived_from_password(self):
        config = LanLinkConfig(
            host="127.0.0.1", port=0,
            crypto={"password": "hunter2", "salt": "s", "iterations": 10},
            pairing={"sweep_interval": 0},
        )
        node = Node(config, get_local_address=lambda: "127.0.0.1")
        await node.start()
        try:
            assert node.key == cipher.derive_key("hunter2", "s", 10)
        finally:
            await node.stop()

    @pytest.mark.asyncio
    async def test_no_address_leaves_code_unset(self):
        from lanlink.net.errors import NoAddressError

        def no_address():
            raise NoAddressError("offline")

        node = Node(make_config(), get_local_address=no_address)
        await node.start()
        try:
            assert node.pairing_code is None
            assert node.port > 0
        finally:
            await node.stop()

    @pytest.mark.asyncio
    async def test_sweeper_lifecycle(self):
        node = make_node(pairing={"sweep_interval": 60})
        assert node.sweeper is not None
        await node.start()
        assert node.sweeper.running
        await node.stop()
        assert not node.sweeper.running

    def test_sweeper_disabled(self):
        assert make_node().sweeper is None

    def test_storage_defaults(self, tmp_path):
        assert isinstance(make_node().storage, MemoryStorage)
        path = tmp_path / "pairings.json"
        node = make_node(pairing={"storage_path": str(path)})
        assert isinstance(node.storage, JsonFileStorage)


# ---------------------------------------------------------------------------
# Device management
# ---------------------------------------------------------------------------

class TestDevices:
    @pytest.mark.asyncio
    async def test_scan_lists_device(self, pair):
        a, b = pair
        devices = await a.devices()
        assert len(devices) == 1
        assert devices[0].id == f"127.0.0.1:{b.port}"
        assert devices[0].name == "Bravo"

    @pytest.mark.asyncio
    async def test_remove_device(self, pair):
        a, b = pair
        device_id = f"127.0.0.1:{b.port}"
        assert await a.remove_device(device_id) is True
        assert await a.remove_device(device_id) is False
        assert await a.devices() == []
        with pytest.raises(DeviceNotFoundError):
            await a.send_request("GET", "/ping", device_id)

    @pytest.mark.asyncio
    async def test_scan_expired_code(self):
        clock = ManualClock(NOW)
        node = make_node(clock=clock)
        code = PairingInfo("127.0.0.1", 9999, KEY, NOW - 1).to_json()
        with pytest.raises(ExpiredCodeError):
            await node.scan_code(code)
        assert await node.devices() == []

    @pytest.mark.asyncio
    async def test_sweep_removes_expired(self):
        clock = ManualClock(NOW)
        node = make_node(clock=clock, pairing={"sweep_interval": 60})
        await node.scan_code(PairingInfo("10.0.0.9", 7000, KEY, NOW + 10).to_json())
        clock.advance(10)
        await node.sweeper.tick()
        assert await node.storage.list_keys() == []

    @pytest.mark.asyncio
    async def test_pairings_persist_across_restarts(self, tmp_path):
        path = tmp_path / "pairings.json"
        first = make_node(pairing={"storage_path": str(path)})
        code = PairingInfo("10.0.0.9", 7000, KEY, 2**52, {"name": "Lamp"}).to_json()
        await first.scan_code(code)

        second = make_node(pairing={"storage_path": str(path)})
        devices = await second.devices()
        assert [(d.id, d.name) for d in devices] == [("10.0.0.9:7000", "Lamp")]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class TestRequests:
    @pytest.mark.asyncio
    async def test_ping_pong(self, pair):
        a, b = pair
        assert await a.send_request("GET", "/ping", f"127.0.0.1:{b.port}") == "pong"
        assert await b.send_request("GET", "/ping", f"127.0.0.1:{a.port}") == "pong"

    @pytest.mark.asyncio
    async def test_body_round_trip(self, pair):
        a, b = pair
        body = {"text": "héllo", "n": [1, 2, 3]}
        assert await a.send_request("post", "/echo", f"127.0.0.1:{b.port}", body) == {"got": body}

    @pytest.mark.asyncio
    async def test_unrouted_path_fails_with_404(self, pair):
        a, b = pair
        with pytest.raises(RequestFailedError) as info:
            await a.send_request("GET", "/unknown", f"127.0.0.1:{b.port}")
        assert info.value.status == 404

    @pytest.mark.asyncio
    async def test_handler_status_and_body_surface(self, pair):
        a, b = pair
        with pytest.raises(RequestFailedError) as info:
            await a.send_request("GET", "/missing", f"127.0.0.1:{b.port}")
        assert (info.value.status, info.value.body) == (404, "nope")

    @pytest.mark.asyncio
    async def test_handler_crash_fails_with_500(self, pair):
        a, b = pair
        with pytest.raises(RequestFailedError) as info:
            await a.send_request("GET", "/boom", f"127.0.0.1:{b.port}")
        assert info.value.status == 500

    @pytest.mark.asyncio
    async def test_send_after_stop_fails_fast(self, pair):
        a, b = pair
        await a.stop()
        with pytest.raises(EngineStoppedError):
            await a.send_request("GET", "/ping", f"127.0.0.1:{b.port}")
        assert not a.engine.running

    @pytest.mark.asyncio
    async def test_unknown_device(self, pair):
        a, _ = pair
        with pytest.raises(DeviceNotFoundError):
            await a.send_request("GET", "/ping", "127.0.0.1:1")
        with pytest.raises(DeviceNotFoundError):
            await a.send_request("GET", "/ping", "not-an-id")

    @pytest.mark.asyncio
    async def test_wrong_key_times_out(self, pair):
        a, b = pair
        # b remembers a with a key a does not use.
        stale = PairingInfo("127.0.0.1", a.port, "aa" * 32, 2**52)
        await b.directory.save(stale)
        with pytest.raises(RequestTimeoutError):
            await b.send_request("GET", "/ping", f"127.0.0.1:{a.port}", timeout_ms=200)

    @pytest.mark.asyncio
    async def test_peer_without_router_times_out(self):
        a = make_node(router=server_router())
        silent = make_node()
        await a.start()
        await silent.start()
        try:
            await a.scan_code(silent.pairing_code)
            await silent.scan_code(a.pairing_code)
            with pytest.raises(RequestTimeoutError):
                await a.send_request("GET", "/ping", f"127.0.0.1:{silent.port}", timeout_ms=200)
        finally:
            await a.stop()
            await silent.stop()
