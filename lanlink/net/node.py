"""One device's complete lanlink stack.

``Node`` wires the transport, pairing directory, request engine and an
optional router together from a :class:`~lanlink.config.LanLinkConfig`, and
exposes the device-level operations an application needs: show a pairing
code, scan a peer's code, list paired devices, send requests, and forget
devices.

Usage::

    router = Router().get("/ping", lambda req: HttpResponse(200, "pong"))
    node = Node(LanLinkConfig(port=0), router=router)
    await node.start()
    print(node.pairing_code)            # show this as a QR code
    device = await node.scan_code(code_from_peer)
    body = await node.send_request("GET", "/ping", device.id)
"""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from lanlink.config.schema import LanLinkConfig
from lanlink.net import cipher
from lanlink.net.clock import Clock, system_clock
from lanlink.net.engine import RequestEngine
from lanlink.net.errors import NoAddressError, NotStartedError, RequestFailedError
from lanlink.net.pairing import AddressResolver, Device, PairingDirectory
from lanlink.net.protocol import HttpMethod, HttpRequest
from lanlink.net.resilience import Watchdog
from lanlink.net.router import Router
from lanlink.net.storage import JsonFileStorage, MemoryStorage, StorageLayer
from lanlink.net.transport import UDPTransport


class Node:
    """A paired-messaging endpoint for this device.

    Parameters
    ----------
    config:
        Node settings; defaults apply when omitted.
    storage:
        Pairing storage.  Defaults to a ``JsonFileStorage`` when
        ``config.pairing.storage_path`` is set, else ``MemoryStorage``.
    router:
        Answers inbound requests.  Without one, inbound requests get no
        reply and the peer times out.
    get_local_address:
        Overrides LAN address detection for pairing codes.
    clock:
        Epoch-millisecond clock for expiry decisions.
    """

    def __init__(
        self,
        config: LanLinkConfig | None = None,
        *,
        storage: StorageLayer | None = None,
        router: Router | None = None,
        get_local_address: AddressResolver | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or LanLinkConfig()
        self.clock = clock or system_clock

        if storage is None:
            path = self.config.storage_path
            if path is not None:
                storage = JsonFileStorage(path)
                storage.load()
            else:
                storage = MemoryStorage()
        self.storage = storage

        self.transport = UDPTransport(host=self.config.host)
        self.directory = PairingDirectory(
            storage,
            get_local_address=get_local_address,
            clock=self.clock,
            key_prefix=self.config.pairing.key_prefix,
        )
        self.engine = RequestEngine(
            self.transport,
            self.directory,
            clock=self.clock,
            default_timeout_ms=self.config.request_timeout_ms,
        )
        self.router = router
        if router is not None:
            router.bind(self.engine)

        sweep_interval = self.config.pairing.sweep_interval
        self.sweeper: Watchdog | None = None
        if sweep_interval > 0:
            self.sweeper = Watchdog(
                "pairing-sweep", self.directory.remove_expired, interval=float(sweep_interval),
            )

        self.key: str | None = None
        self.pairing_code: str | None = None

    # -- lifecycle -----------------------------------------------------------

    @property
    def port(self) -> int | None:
        return self.transport.port

    async def start(self) -> int:
        """Derive the key, bind the socket and build this node's pairing code.

        Returns the bound UDP port.
        """
        self.key = await self._resolve_key()
        port = await self.transport.start(self.config.port)
        try:
            await self.engine.start()
        except Exception as exc:
            logger.error("[LanLink/Node] engine start failed, stopping transport: {}", exc)
            await self.transport.stop()
            raise
        if self.sweeper is not None:
            self.sweeper.start()

        try:
            self.pairing_code = await self.generate_code()
        except NoAddressError as exc:
            logger.warning("[LanLink/Node] no LAN address, pairing code unavailable: {}", exc)

        logger.info("[LanLink/Node] started on port {}", port)
        return port

    async def stop(self) -> None:
        # Errors in one component should not prevent stopping the others.
        if self.sweeper is not None:
            self.sweeper.stop()
        try:
            await self.engine.stop()
        except Exception as exc:
            logger.error("[LanLink/Node] engine stop error: {}", exc)
        try:
            await self.transport.stop()
        except Exception as exc:
            logger.error("[LanLink/Node] transport stop error: {}", exc)
        logger.info("[LanLink/Node] stopped")

    async def _resolve_key(self) -> str:
        crypto = self.config.crypto
        if crypto.key:
            return crypto.key
        # PBKDF2 runs in a worker thread, off the event loop.
        return await asyncio.to_thread(
            cipher.derive_key, crypto.password, crypto.salt, crypto.iterations, cipher.KEY_BITS,
        )

    # -- pairing -------------------------------------------------------------

    async def generate_code(self, metadata: dict[str, Any] | None = None) -> str:
        """Build a fresh pairing code for this node and remember it."""
        port = self.transport.port
        if port is None or self.key is None:
            raise NotStartedError("node not started")
        name = self.config.pairing.device_name
        if not name:
            name = f"Device: {await self.directory.local_address()}"
        self.pairing_code = await self.directory.generate_code(
            port,
            self.key,
            ttl_ms=self.config.pairing.ttl_ms,
            metadata={"deviceName": name, **(metadata or {})},
        )
        return self.pairing_code

    async def scan_code(self, code: str) -> Device:
        """Decode a peer's pairing code and remember the peer."""
        info = self.directory.decode_code(code)
        await self.directory.save(info)
        return Device.from_pairing_info(info)

    async def devices(self) -> list[Device]:
        return await self.directory.list_devices()

    async def remove_device(self, device_id: str) -> bool:
        return await self.directory.remove_device(device_id)

    # -- requests ------------------------------------------------------------

    async def send_request(
        self,
        method: str | HttpMethod,
        path: str,
        device_id: str,
        body: Any = None,
        timeout_ms: int | None = None,
    ) -> Any:
        """Send a request to a paired device and return the response body.

        Raises ``DeviceNotFoundError`` for unknown or expired devices,
        ``RequestTimeoutError`` when no answer arrives, and
        ``RequestFailedError`` for any status other than 200.
        """
        device = await self.directory.find_device(device_id)
        response = await self.engine.call(
            HttpRequest(method, path, body=body), device.pairing_info, timeout_ms,
        )
        if response.status != 200:
            raise RequestFailedError(response.status, response.body)
        return response.body
