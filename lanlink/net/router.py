"""Exact-match request routing for inbound lanlink requests.

Routes are keyed by ``(method, path)`` with no wildcards or path parameters;
a handler that needs parameters parses ``request.path`` itself.

Usage::

    router = Router()
    router.get("/ping", lambda req: HttpResponse(200, "pong"))
    router.bind(engine)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from loguru import logger

from lanlink.net.protocol import HttpMethod, HttpRequest, HttpResponse, normalise_method

if TYPE_CHECKING:
    from lanlink.net.engine import RequestEngine

RouteHandler = Callable[[HttpRequest], Union[HttpResponse, Awaitable[HttpResponse]]]

NOT_FOUND = 404
INTERNAL_ERROR = 500


class Router:
    """Dispatch table from ``(method, path)`` to a handler."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], RouteHandler] = {}

    # -- registration --------------------------------------------------------

    def register(self, method: str | HttpMethod, path: str, handler: RouteHandler) -> Router:
        """Route *method* + *path* to *handler*, replacing any existing route."""
        key = (normalise_method(method), path)
        if key in self._routes:
            logger.debug(f"[LanLink/Router] replacing handler for {key[0]} {path}")
        self._routes[key] = handler
        return self

    def get(self, path: str, handler: RouteHandler) -> Router:
        return self.register(HttpMethod.GET, path, handler)

    def post(self, path: str, handler: RouteHandler) -> Router:
        return self.register(HttpMethod.POST, path, handler)

    def put(self, path: str, handler: RouteHandler) -> Router:
        return self.register(HttpMethod.PUT, path, handler)

    def delete(self, path: str, handler: RouteHandler) -> Router:
        return self.register(HttpMethod.DELETE, path, handler)

    def routes(self) -> dict[tuple[str, str], RouteHandler]:
        """Return a copy of the routing table."""
        return dict(self._routes)

    # -- dispatch ------------------------------------------------------------

    async def dispatch(self, request: HttpRequest) -> HttpResponse:
        """Run the matching handler.

        Returns ``404`` when nothing matches and ``500`` when the handler
        raises or returns something other than an ``HttpResponse``;
        otherwise the handler's response unchanged.
        """
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            logger.debug(f"[LanLink/Router] no route for {request.method} {request.path}")
            return HttpResponse(status=NOT_FOUND)
        try:
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
        except Exception as exc:
            logger.error(f"[LanLink/Router] handler for {request.method} {request.path} failed: {exc}")
            return HttpResponse(status=INTERNAL_ERROR)
        if not isinstance(result, HttpResponse):
            logger.error(
                f"[LanLink/Router] handler for {request.method} {request.path} returned "
                f"{type(result).__name__}, not HttpResponse"
            )
            return HttpResponse(status=INTERNAL_ERROR)
        return result

    def bind(self, engine: RequestEngine) -> Router:
        """Install this router as *engine*'s inbound request callback."""

        async def _on_request(request, _pairing, respond) -> None:
            await respond(await self.dispatch(request))

        engine.on_request(_on_request)
        return self
