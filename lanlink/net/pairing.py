"""Code-based pairing and the directory of remembered peers.

Pairing flow
------------
1. Device A calls ``generate_code()`` and shows the result (usually as a QR
   code).  The code is JSON carrying A's address, port, shared key and an
   absolute expiry.
2. Device B scans it, calls ``decode_code()`` and then ``save()`` to
   remember A.
3. From then on B can reach A, and A recognises B's datagrams once it has
   paired back the same way.

A pairing is only valid until its expiry.  The shared key is the only trust
anchor, so a leaked or outdated code stops working on its own rather than
requiring revocation.  Expired records are evicted lazily by ``lookup()``
and ``list_all()``, and in bulk by ``remove_expired()``.

Code format
-----------
    {"ipAddress": "192.168.1.20", "port": 12345, "key": "<hex>",
     "expiry": 1700000000000, "extraData": {"deviceName": "..."}}
"""

from __future__ import annotations

import asyncio
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from lanlink.net.address import get_local_address as default_local_address
from lanlink.net.cipher import KEY_BYTES
from lanlink.net.clock import Clock, system_clock
from lanlink.net.errors import DeviceNotFoundError, ExpiredCodeError, InvalidCodeError
from lanlink.net.storage import StorageLayer

DEFAULT_TTL_MS = 8 * 60 * 60 * 1000  # 8 hours
DEFAULT_KEY_PREFIX = "pairingInfo"

AddressResolver = Callable[[], "str | Awaitable[str]"]

_HEX_KEY = re.compile(rf"[0-9a-fA-F]{{{KEY_BYTES * 2}}}")


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class PairingInfo:
    """Everything needed to talk to one peer."""

    address: str
    port: int
    key: str                 # hex AES key shared with the peer
    expires_at: int          # epoch milliseconds
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def device_id(self) -> str:
        return f"{self.address}:{self.port}"

    def is_expired(self, now_ms: int) -> bool:
        return self.expires_at <= now_ms

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "ipAddress": self.address,
            "port": self.port,
            "key": self.key,
            "expiry": self.expires_at,
        }
        if self.metadata:
            d["extraData"] = self.metadata
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, d: Any) -> PairingInfo:
        """Validate and build from the code's JSON object.

        Raises :class:`InvalidCodeError` on missing or mistyped fields.
        """
        if not isinstance(d, dict):
            raise InvalidCodeError("pairing info is not a JSON object")
        missing = [k for k in ("ipAddress", "port", "key", "expiry") if not d.get(k)]
        if missing:
            raise InvalidCodeError(f"missing field(s): {', '.join(missing)}")

        address, port, key, expiry = d["ipAddress"], d["port"], d["key"], d["expiry"]
        if not isinstance(address, str):
            raise InvalidCodeError("'ipAddress' must be a string")
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            raise InvalidCodeError(f"invalid port {port!r}")
        if not isinstance(key, str) or not _HEX_KEY.fullmatch(key):
            raise InvalidCodeError(f"'key' must be {KEY_BYTES * 2} hex characters")
        if (
            not isinstance(expiry, (int, float))
            or isinstance(expiry, bool)
            or not math.isfinite(expiry)
        ):
            raise InvalidCodeError("'expiry' must be a finite number")
        extra = d.get("extraData")
        if extra is not None and not isinstance(extra, dict):
            raise InvalidCodeError("'extraData' must be an object")

        return cls(
            address=address,
            port=port,
            key=key,
            expires_at=int(expiry),
            metadata=dict(extra or {}),
        )

    @classmethod
    def from_json(cls, raw: str) -> PairingInfo:
        try:
            obj = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            raise InvalidCodeError(f"pairing code is not valid JSON: {exc}") from exc
        return cls.from_dict(obj)


@dataclass
class Device:
    """A paired peer as the application sees it.  Rebuilt on demand."""

    id: str
    name: str
    pairing_info: PairingInfo
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_pairing_info(cls, info: PairingInfo) -> Device:
        meta = info.metadata or {}
        return cls(
            id=info.device_id,
            name=meta.get("name") or meta.get("deviceName") or "Unknown Device",
            pairing_info=info,
            data=dict(meta),
        )


def parse_device_id(device_id: str) -> tuple[str, int]:
    """Split ``"address:port"`` into its parts.

    Raises :class:`DeviceNotFoundError` if *device_id* is not of that form.
    """
    address, sep, port_str = device_id.rpartition(":")
    if not sep or not address or not port_str.isdigit():
        raise DeviceNotFoundError(f"invalid device id: {device_id!r}")
    return address, int(port_str)


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

class PairingDirectory:
    """Generates and decodes pairing codes and remembers paired peers.

    Parameters
    ----------
    storage:
        Where pairings are persisted (see :mod:`lanlink.net.storage`).
    get_local_address:
        Returns this device's LAN address (sync or async).  May raise
        :class:`~lanlink.net.errors.NoAddressError`.
    clock:
        Epoch-millisecond clock used for every expiry decision.
    key_prefix:
        Storage keys look like ``<prefix>:<address>:<port>``.
    """

    def __init__(
        self,
        storage: StorageLayer,
        get_local_address: AddressResolver | None = None,
        clock: Clock | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ) -> None:
        self.storage = storage
        self._get_local_address = get_local_address or default_local_address
        self.clock = clock or system_clock
        self.key_prefix = key_prefix

    def storage_key(self, address: str, port: int) -> str:
        return f"{self.key_prefix}:{address}:{port}"

    async def local_address(self) -> str:
        result = self._get_local_address()
        if asyncio.iscoroutine(result):
            result = await result
        return result

    # -- codes ---------------------------------------------------------------

    async def generate_code(
        self,
        port: int,
        key: str,
        ttl_ms: int = DEFAULT_TTL_MS,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Build this device's pairing code.  Nothing is stored."""
        info = PairingInfo(
            address=await self.local_address(),
            port=port,
            key=key,
            expires_at=self.clock() + ttl_ms,
            metadata=dict(metadata or {}),
        )
        logger.info(
            f"[LanLink/Pairing] generated code for {info.device_id} "
            f"(valid {ttl_ms / 1000:.0f}s)"
        )
        return info.to_json()

    def decode_code(self, code: str) -> PairingInfo:
        """Parse a scanned code.

        Raises :class:`InvalidCodeError` or :class:`ExpiredCodeError`.  The
        result is not stored; call :meth:`save` to remember the peer.
        """
        info = PairingInfo.from_json(code)
        if info.is_expired(self.clock()):
            raise ExpiredCodeError(f"pairing code for {info.device_id} has expired")
        return info

    # -- persistence ---------------------------------------------------------

    async def save(self, info: PairingInfo) -> None:
        """Remember *info*, replacing any pairing for the same address and port."""
        await self.storage.set_item(self.storage_key(info.address, info.port), info.to_json())
        logger.info(f"[LanLink/Pairing] saved pairing for {info.device_id}")

    async def lookup(self, address: str, port: int) -> PairingInfo | None:
        """Return the live pairing for ``(address, port)``, evicting it if expired."""
        return await self._load(self.storage_key(address, port))

    async def list_all(self) -> list[PairingInfo]:
        """Return every live pairing, evicting expired ones on the way."""
        found: list[PairingInfo] = []
        for key in await self._pairing_keys():
            info = await self._load(key)
            if info is not None:
                found.append(info)
        return found

    async def remove_expired(self) -> int:
        """Evict every expired pairing.  Returns how many were removed."""
        now = self.clock()
        removed = 0
        for key in await self._pairing_keys():
            raw = await self.storage.get_item(key)
            if raw is None:
                continue
            try:
                expired = PairingInfo.from_json(raw).is_expired(now)
            except InvalidCodeError:
                expired = True
            if expired:
                await self.storage.remove_item(key)
                removed += 1
        if removed:
            logger.info(f"[LanLink/Pairing] removed {removed} expired pairing(s)")
        return removed

    async def remove(self, address: str, port: int) -> bool:
        """Forget a peer.  Returns ``True`` if a pairing was stored."""
        key = self.storage_key(address, port)
        if await self.storage.get_item(key) is None:
            return False
        await self.storage.remove_item(key)
        logger.info(f"[LanLink/Pairing] removed pairing for {address}:{port}")
        return True

    # -- devices -------------------------------------------------------------

    async def list_devices(self) -> list[Device]:
        return [Device.from_pairing_info(info) for info in await self.list_all()]

    async def find_device(self, device_id: str) -> Device:
        """Return the live device with *device_id*, else raise ``DeviceNotFoundError``."""
        info = await self.lookup(*parse_device_id(device_id))
        if info is None:
            raise DeviceNotFoundError(f"device not found: {device_id}")
        return Device.from_pairing_info(info)

    async def remove_device(self, device_id: str) -> bool:
        return await self.remove(*parse_device_id(device_id))

    # -- internals -----------------------------------------------------------

    async def _pairing_keys(self) -> list[str]:
        prefix = f"{self.key_prefix}:"
        return [k for k in await self.storage.list_keys() if k.startswith(prefix)]

    async def _load(self, key: str) -> PairingInfo | None:
        raw = await self.storage.get_item(key)
        if raw is None:
            return None
        try:
            info = PairingInfo.from_json(raw)
        except InvalidCodeError as exc:
            logger.warning(f"[LanLink/Pairing] discarding corrupt record {key!r}: {exc}")
            await self.storage.remove_item(key)
            return None
        if info.is_expired(self.clock()):
            logger.debug(f"[LanLink/Pairing] pairing for {info.device_id} expired, evicting")
            await self.storage.remove_item(key)
            return None
        return info
