"""UDP transport for lanlink datagrams.

How it works
------------
1. ``start()`` binds one non-blocking UDP socket and spawns a listen loop
   that awaits ``loop.sock_recvfrom``.
2. Every datagram is handed, in arrival order, to the single registered
   receive handler as ``(data, sender_ip, sender_port)``.
3. ``send()`` fires one datagram at an ``(ip, port)`` pair.  Nothing is
   acknowledged or retried; loss and reordering are the caller's concern.

The transport knows nothing about encryption or envelopes.
"""

from __future__ import annotations

import asyncio
import socket
from typing import Any, Callable

from loguru import logger

from lanlink.net.errors import BindError, NotStartedError, SendError
from lanlink.net.resilience import cancel_task, supervised_task

# Largest payload a single UDP datagram can carry over IPv4.
MAX_DATAGRAM = 65507

# Callback type: (data, sender_ip, sender_port) -> anything.
ReceiveHandler = Callable[[bytes, str, int], Any]


class UDPTransport:
    """Owns one UDP endpoint.

    Parameters
    ----------
    host:
        Interface to bind on (default ``"0.0.0.0"``).
    """

    def __init__(self, host: str = "0.0.0.0"):
        self.host = host
        self._sock: socket.socket | None = None
        self._port: int | None = None
        self._handler: ReceiveHandler | None = None
        self._listen_task: asyncio.Task | None = None
        self._running = False

    # -- handler registration ------------------------------------------------

    def set_receive_handler(self, handler: ReceiveHandler | None) -> None:
        """Install *handler* for inbound datagrams, replacing any previous one."""
        self._handler = handler

    # -- lifecycle -----------------------------------------------------------

    @property
    def port(self) -> int | None:
        """The bound port, or ``None`` while stopped."""
        return self._port

    def get_port(self) -> int | None:
        return self._port

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, preferred_port: int = 0) -> int:
        """Bind and start listening.  ``0`` asks the OS for an ephemeral port.

        Returns the bound port.
        """
        if self._sock is not None:
            raise BindError(f"transport already started on port {self._port}")

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((self.host, preferred_port))
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise BindError(f"cannot bind {self.host}:{preferred_port}: {exc}") from exc

        self._sock = sock
        self._port = sock.getsockname()[1]
        self._running = True
        self._listen_task = supervised_task(self._listen_loop(), name="lanlink-udp-listen")
        logger.info(f"[LanLink/Transport] listening on {self.host}:{self._port}")
        return self._port

    async def stop(self) -> None:
        """Close the socket.  Stopping a stopped transport is a no-op."""
        if self._sock is None:
            return
        self._running = False
        task, self._listen_task = self._listen_task, None
        await cancel_task(task)
        self._sock.close()
        self._sock = None
        self._port = None
        logger.info("[LanLink/Transport] stopped")

    # -- sending -------------------------------------------------------------

    async def send(self, data: bytes, ip: str, port: int) -> None:
        """Send one datagram.  Delivery is not guaranteed."""
        if self._sock is None:
            raise NotStartedError("transport not started; call start() first")
        loop = asyncio.get_running_loop()
        try:
            await loop.sock_sendto(self._sock, data, (ip, port))
        except OSError as exc:
            raise SendError(f"send to {ip}:{port} failed: {exc}") from exc
        logger.debug(f"[LanLink/Transport] sent {len(data)} bytes to {ip}:{port}")

    # -- receiving -----------------------------------------------------------

    async def _listen_loop(self) -> None:
        loop = asyncio.get_running_loop()
        while self._running and self._sock is not None:
            try:
                data, addr = await loop.sock_recvfrom(self._sock, MAX_DATAGRAM)
            except OSError as exc:
                if not self._running:
                    break
                # e.g. ICMP port-unreachable surfacing as ConnectionRefusedError
                logger.debug(f"[LanLink/Transport] receive error: {exc}")
                await asyncio.sleep(0.01)
                continue
            self._dispatch(data, addr[0], addr[1])

    def _dispatch(self, data: bytes, ip: str, port: int) -> None:
        handler = self._handler
        if handler is None:
            logger.debug(f"[LanLink/Transport] no handler, dropping datagram from {ip}:{port}")
            return
        try:
            result = handler(data, ip, port)
            if asyncio.iscoroutine(result):
                supervised_task(result, name=f"lanlink-recv-{ip}:{port}")
        except Exception as exc:
            logger.error(f"[LanLink/Transport] handler error: {exc}")
