"""Peer-to-peer messaging for devices on the same local network.

Two devices pair by exchanging a pairing code out of band (typically shown
as a QR code on one screen and scanned by the other).  The code carries the
sender's address, port and a shared AES key; after pairing, each side can
issue HTTP-shaped requests to the other over encrypted UDP datagrams,
without any server in between.
"""

from lanlink.net.engine import RequestEngine
from lanlink.net.node import Node
from lanlink.net.pairing import Device, PairingDirectory, PairingInfo
from lanlink.net.protocol import HttpMethod, HttpRequest, HttpResponse
from lanlink.net.router import Router
from lanlink.net.storage import JsonFileStorage, MemoryStorage
from lanlink.net.transport import UDPTransport

__all__ = [
    "Device",
    "HttpMethod",
    "HttpRequest",
    "HttpResponse",
    "JsonFileStorage",
    "MemoryStorage",
    "Node",
    "PairingDirectory",
    "PairingInfo",
    "RequestEngine",
    "Router",
    "UDPTransport",
]
