"""Find this device's LAN address for embedding in pairing codes."""

from __future__ import annotations

import ipaddress
import socket

from lanlink.net.errors import NoAddressError

# Never contacted: connecting a UDP socket only selects a route.
_PROBE_TARGET = ("10.255.255.255", 1)


def get_local_address() -> str:
    """Return the IPv4 address of the interface holding the default route.

    Raises :class:`NoAddressError` when the machine is not on a network
    (only loopback or nothing is available).
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(_PROBE_TARGET)
        ip = sock.getsockname()[0]
    except OSError as exc:
        raise NoAddressError(f"no network route: {exc}") from exc
    finally:
        sock.close()

    if not ip or ip == "0.0.0.0" or ipaddress.ip_address(ip).is_loopback:
        raise NoAddressError("not connected to a local network")
    return ip
