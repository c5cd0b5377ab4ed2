"""Tests for exact-match request routing."""

from __future__ import annotations

import pytest

from lanlink.net.protocol import HttpMethod, HttpRequest, HttpResponse
from lanlink.net.router import Router


class FakeEngine:
    def __init__(self):
        self.callback = None

    def on_request(self, callback):
        self.callback = callback


class TestRegistration:
    def test_shortcuts_register_methods(self):
        router = Router()
        handler = lambda req: HttpResponse(200)  # noqa: E731
        router.get("/a", handler).post("/a", handler).put("/b", handler).delete("/c", handler)
        assert set(router.routes()) == {
            ("GET", "/a"), ("POST", "/a"), ("PUT", "/b"), ("DELETE", "/c"),
        }

    def test_method_is_normalised(self):
        router = Router().register("post", "/x", lambda req: HttpResponse(200))
        assert ("POST", "/x") in router.routes()

    def test_unknown_method_rejected(self):
        with pytest.raises(ValueError):
            Router().register("PATCH", "/x", lambda req: HttpResponse(200))

    def test_routes_returns_copy(self):
        router = Router().get("/a", lambda req: HttpResponse(200))
        router.routes().clear()
        assert len(router.routes()) == 1


class TestDispatch:
    @pytest.mark.asyncio
    async def test_sync_handler(self):
        router = Router().get("/ping", lambda req: HttpResponse(200, "pong"))
        response = await router.dispatch(HttpRequest("GET", "/ping"))
        assert (response.status, response.body) == (200, "pong")

    @pytest.mark.asyncio
    async def test_async_handler_receives_request(self):
        async def echo(req):
            return HttpResponse(200, {"path": req.path, "body": req.body})

        router = Router().post("/echo", echo)
        response = await router.dispatch(HttpRequest(HttpMethod.POST, "/echo", body="hi"))
        assert response.body == {"path": "/echo", "body": "hi"}

    @pytest.mark.asyncio
    async def test_no_route_is_404(self):
        router = Router().get("/ping", lambda req: HttpResponse(200))
        assert (await router.dispatch(HttpRequest("GET", "/missing"))).status == 404
        # Method is part of the key.
        assert (await router.dispatch(HttpRequest("POST", "/ping"))).status == 404

    @pytest.mark.asyncio
    async def test_no_prefix_matching(self):
        router = Router().get("/items", lambda req: HttpResponse(200))
        assert (await router.dispatch(HttpRequest("GET", "/items/1"))).status == 404

    @pytest.mark.asyncio
    async def test_later_registration_wins(self):
        router = Router()
        router.get("/v", lambda req: HttpResponse(200, "old"))
        router.get("/v", lambda req: HttpResponse(200, "new"))
        assert (await router.dispatch(HttpRequest("GET", "/v"))).body == "new"

    @pytest.mark.asyncio
    async def test_handler_error_is_500(self):
        def broken(req):
            raise RuntimeError("kaput")

        router = Router().get("/boom", broken)
        assert (await router.dispatch(HttpRequest("GET", "/boom"))).status == 500

    @pytest.mark.parametrize("returned", [{"status": 200}, None, "pong"])
    @pytest.mark.asyncio
    async def test_non_response_return_is_500(self, returned):
        async def sloppy(req):
            return returned

        router = Router().get("/sloppy", sloppy)
        response = await router.dispatch(HttpRequest("GET", "/sloppy"))
        assert isinstance(response, HttpResponse)
        assert response.status == 500

    @pytest.mark.asyncio
    async def test_non_200_passes_through(self):
        router = Router().get("/teapot", lambda req: HttpResponse(418, "short and stout"))
        response = await router.dispatch(HttpRequest("GET", "/teapot"))
        assert (response.status, response.body) == (418, "short and stout")


class TestBind:
    @pytest.mark.asyncio
    async def test_bind_answers_through_respond(self):
        engine = FakeEngine()
        router = Router().get("/ping", lambda req: HttpResponse(200, "pong"))
        assert router.bind(engine) is router

        replies = []

        async def respond(response):
            replies.append(response)

        await engine.callback(HttpRequest("GET", "/ping"), None, respond)
        await engine.callback(HttpRequest("GET", "/nope"), None, respond)
        assert [(r.status, r.body) for r in replies] == [(200, "pong"), (404, None)]
