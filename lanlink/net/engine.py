"""Request/response correlation over encrypted UDP datagrams.

Outbound
--------
``call()`` mints a 128-bit request id, registers a ``PendingCall`` with its
own timeout timer, encrypts ``{"type": "request", ...}`` with the peer's key
and sends exactly one datagram.  The call finishes when a response with the
same id arrives, or fails with ``RequestTimeoutError`` when the timer fires.
A lost datagram and a slow peer look the same: both end in a timeout.

Inbound
-------
The transport hands every datagram to ``handle_datagram()``, which only
queues it.  A single worker then processes the queue in arrival order:

1. parse the ``{"cipher", "iv"}`` wrapper,
2. look up the sender's pairing by ``(ip, port)``,
3. decrypt with that pairing's key,
4. parse the envelope,
5. resolve the matching pending call (responses) or hand the request to
   the registered callback in its own task (requests).

Any failure in steps 1-4 drops that one datagram with a log line.  Nothing
is sent back, so the remote caller simply times out.  Responses whose id is
unknown (already timed out, or spurious) are ignored.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

from lanlink.net import cipher
from lanlink.net.clock import Clock, system_clock
from lanlink.net.errors import (
    DecryptionError,
    EngineStoppedError,
    MalformedDatagramError,
    MalformedEnvelopeError,
    RequestTimeoutError,
)
from lanlink.net.pairing import PairingDirectory, PairingInfo
from lanlink.net.protocol import (
    Datagram,
    Envelope,
    HttpMethod,
    HttpRequest,
    HttpResponse,
    new_request_id,
)
from lanlink.net.resilience import cancel_task, supervised_task
from lanlink.net.transport import UDPTransport

DEFAULT_TIMEOUT_MS = 5000

Responder = Callable[[HttpResponse], Awaitable[None]]
# Callback type: (request, sender pairing, respond) -> None or awaitable.
RequestCallback = Callable[[HttpRequest, PairingInfo, Responder], Any]


@dataclass
class PendingCall:
    """An outbound call waiting for its response."""

    request_id: str
    created_at: int                  # epoch ms
    deadline: float                  # event-loop time
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class RequestEngine:
    """Encrypted request/response on top of a :class:`UDPTransport`.

    Creating the engine installs it as the transport's receive handler.

    Parameters
    ----------
    transport:
        The UDP endpoint used for every send and receive.
    directory:
        Source of the sender's key for each inbound datagram.
    clock:
        Epoch-millisecond clock, used for ``PendingCall.created_at``.
    default_timeout_ms:
        Timeout for calls that don't pass one.
    """

    def __init__(
        self,
        transport: UDPTransport,
        directory: PairingDirectory,
        clock: Clock | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self.transport = transport
        self.directory = directory
        self.clock = clock or system_clock
        self.default_timeout_ms = default_timeout_ms

        # request_id → PendingCall
        self._pending: dict[str, PendingCall] = {}
        self._request_callback: RequestCallback | None = None
        self._inbox: asyncio.Queue[tuple[bytes, str, int]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._stopped = False

        transport.set_receive_handler(self.handle_datagram)

    # -- lifecycle -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Start the inbound worker.  Calls and datagrams also start it lazily.

        Also re-arms an engine that was stopped.
        """
        self._stopped = False
        self._ensure_worker()

    async def stop(self) -> None:
        """Stop the inbound worker and fail every pending call.

        Until the next :meth:`start`, inbound datagrams are dropped and
        :meth:`call` raises :class:`EngineStoppedError`.
        """
        self._stopped = True
        worker, self._worker = self._worker, None
        await cancel_task(worker)
        self._inbox = asyncio.Queue()

        pending, self._pending = self._pending, {}
        for call in pending.values():
            if call.timer is not None:
                call.timer.cancel()
            if not call.future.done():
                call.future.set_exception(EngineStoppedError("engine stopped"))
        if pending:
            logger.info(f"[LanLink/Engine] stopped with {len(pending)} pending call(s) failed")
        else:
            logger.debug("[LanLink/Engine] stopped")

    def _ensure_worker(self) -> None:
        if not self.running:
            self._worker = supervised_task(self._inbox_loop(), name="lanlink-engine-inbox")

    # -- inbound request callback -------------------------------------------

    def on_request(self, callback: RequestCallback | None) -> None:
        """Set the callback invoked for inbound requests (replaces any previous one)."""
        self._request_callback = callback

    # -- outbound calls ------------------------------------------------------

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def call(
        self,
        request: HttpRequest,
        pairing: PairingInfo,
        timeout_ms: int | None = None,
    ) -> HttpResponse:
        """Send *request* to the peer in *pairing* and await its response.

        Raises :class:`RequestTimeoutError` if nothing matching arrives in
        time.  Transport errors (``NotStartedError``, ``SendError``)
        propagate unchanged.  A stopped engine raises
        :class:`EngineStoppedError`.
        """
        if self._stopped:
            raise EngineStoppedError("engine stopped")
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        self._ensure_worker()

        loop = asyncio.get_running_loop()
        request_id = new_request_id()
        call = PendingCall(
            request_id=request_id,
            created_at=self.clock(),
            deadline=loop.time() + timeout_ms / 1000,
            future=loop.create_future(),
        )
        call.timer = loop.call_later(timeout_ms / 1000, self._expire, request_id, timeout_ms)
        self._pending[request_id] = call

        try:
            await self._send(Envelope.for_request(request, request_id), pairing)
            logger.debug(
                f"[LanLink/Engine] {request.method} {request.path} → {pairing.device_id} "
                f"(id={request_id[:8]}, timeout={timeout_ms}ms)"
            )
            return await call.future
        finally:
            self._release(request_id)

    async def get(
        self, path: str, pairing: PairingInfo, timeout_ms: int | None = None,
    ) -> HttpResponse:
        return await self.call(HttpRequest(HttpMethod.GET, path), pairing, timeout_ms)

    async def post(
        self, path: str, body: Any, pairing: PairingInfo, timeout_ms: int | None = None,
    ) -> HttpResponse:
        return await self.call(HttpRequest(HttpMethod.POST, path, body=body), pairing, timeout_ms)

    async def put(
        self, path: str, body: Any, pairing: PairingInfo, timeout_ms: int | None = None,
    ) -> HttpResponse:
        return await self.call(HttpRequest(HttpMethod.PUT, path, body=body), pairing, timeout_ms)

    async def delete(
        self, path: str, pairing: PairingInfo, timeout_ms: int | None = None,
    ) -> HttpResponse:
        return await self.call(HttpRequest(HttpMethod.DELETE, path), pairing, timeout_ms)

    def _expire(self, request_id: str, timeout_ms: int) -> None:
        call = self._pending.pop(request_id, None)
        if call is None:
            return
        if not call.future.done():
            call.future.set_exception(
                RequestTimeoutError(f"request {request_id[:8]} timed out after {timeout_ms}ms")
            )
        logger.debug(f"[LanLink/Engine] request {request_id[:8]} timed out")

    def _release(self, request_id: str) -> None:
        call = self._pending.pop(request_id, None)
        if call is not None and call.timer is not None:
            call.timer.cancel()

    async def _send(self, envelope: Envelope, pairing: PairingInfo) -> None:
        encrypted = cipher.encrypt(envelope.to_bytes(), pairing.key)
        datagram = Datagram(cipher=encrypted.ciphertext, iv=encrypted.iv)
        await self.transport.send(datagram.to_bytes(), pairing.address, pairing.port)

    # -- inbound -------------------------------------------------------------

    def handle_datagram(self, data: bytes, ip: str, port: int) -> None:
        """Transport receive handler: queue the datagram for the worker."""
        if self._stopped:
            logger.debug(f"[LanLink/Engine] stopped, dropping datagram from {ip}:{port}")
            return
        self._ensure_worker()
        self._inbox.put_nowait((data, ip, port))

    async def _inbox_loop(self) -> None:
        while True:
            data, ip, port = await self._inbox.get()
            try:
                await self._process(data, ip, port)
            except MalformedDatagramError as exc:
                logger.warning(f"[LanLink/Engine] malformed datagram from {ip}:{port}: {exc}")
            except DecryptionError as exc:
                logger.warning(f"[LanLink/Engine] cannot decrypt datagram from {ip}:{port}: {exc}")
            except MalformedEnvelopeError as exc:
                logger.warning(f"[LanLink/Engine] malformed envelope from {ip}:{port}: {exc}")
            except Exception as exc:
                logger.error(f"[LanLink/Engine] error processing datagram from {ip}:{port}: {exc}")

    async def _process(self, data: bytes, ip: str, port: int) -> None:
        datagram = Datagram.from_bytes(data)

        pairing = await self.directory.lookup(ip, port)
        if pairing is None:
            logger.warning(f"[LanLink/Engine] no pairing for {ip}:{port}, dropping datagram")
            return

        envelope = Envelope.from_bytes(cipher.decrypt(datagram.cipher, datagram.iv, pairing.key))
        if envelope.is_request:
            self._handle_request(envelope, pairing)
        else:
            self._resolve(envelope)

    def _resolve(self, envelope: Envelope) -> None:
        call = self._pending.pop(envelope.request_id, None)
        if call is None:
            logger.debug(
                f"[LanLink/Engine] ignoring response for unknown request {envelope.request_id[:8]}"
            )
            return
        if call.timer is not None:
            call.timer.cancel()
        if not call.future.done():
            call.future.set_result(envelope.response)

    def _handle_request(self, envelope: Envelope, pairing: PairingInfo) -> None:
        callback = self._request_callback
        if callback is None:
            logger.debug(
                f"[LanLink/Engine] no request handler, dropping request from {pairing.device_id}"
            )
            return

        async def respond(response: HttpResponse) -> None:
            await self._send(Envelope.for_response(envelope.request_id, response), pairing)

        supervised_task(
            self._run_callback(callback, envelope.request, pairing, respond),
            name=f"lanlink-request-{envelope.request_id[:8]}",
        )

    @staticmethod
    async def _run_callback(
        callback: RequestCallback,
        request: HttpRequest,
        pairing: PairingInfo,
        respond: Responder,
    ) -> None:
        result = callback(request, pairing, respond)
        if asyncio.iscoroutine(result):
            await result
