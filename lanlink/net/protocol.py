"""Wire-level protocol for lanlink messages.

Two layers travel in every UDP datagram.

Datagram (outer, plaintext JSON)
--------------------------------
{
    "cipher": "...",      # base64 AES-256-CBC ciphertext of the envelope
    "iv": "..."           # hex 16-byte IV
}

Envelope (inner, JSON before encryption)
----------------------------------------
{
    "type": "request" | "response",
    "requestId": "...",                      # 128-bit random hex token
    "request": {"method", "path", "body"?, "headers"?},    # requests only
    "response": {"status", "body"?, "headers"?}            # responses only
}

The HTTP shapes are a routing/content convention, not real HTTP.
"""

from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Any

from lanlink.net.errors import MalformedDatagramError, MalformedEnvelopeError


class HttpMethod(str, Enum):
    """Methods a request may carry."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"


class EnvelopeType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"


def new_request_id() -> str:
    """Mint a 128-bit random correlation id."""
    return secrets.token_hex(16)


# ---------------------------------------------------------------------------
# HTTP-shaped payloads
# ---------------------------------------------------------------------------

@dataclass
class HttpRequest:
    method: str
    path: str
    body: Any = None
    headers: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.method = normalise_method(self.method)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"method": self.method, "path": self.path}
        if self.body is not None:
            d["body"] = self.body
        if self.headers is not None:
            d["headers"] = self.headers
        return d

    @classmethod
    def from_dict(cls, d: Any) -> HttpRequest:
        if not isinstance(d, dict):
            raise MalformedEnvelopeError("request is not an object")
        method, path = d.get("method"), d.get("path")
        if not isinstance(method, str) or not isinstance(path, str):
            raise MalformedEnvelopeError("request needs string 'method' and 'path'")
        try:
            method = normalise_method(method)
        except ValueError as exc:
            raise MalformedEnvelopeError(str(exc)) from exc
        return cls(
            method=method,
            path=path,
            body=d.get("body"),
            headers=_headers(d.get("headers")),
        )


@dataclass
class HttpResponse:
    status: int
    body: Any = None
    headers: dict[str, str] | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"status": self.status}
        if self.body is not None:
            d["body"] = self.body
        if self.headers is not None:
            d["headers"] = self.headers
        return d

    @classmethod
    def from_dict(cls, d: Any) -> HttpResponse:
        if not isinstance(d, dict):
            raise MalformedEnvelopeError("response is not an object")
        status = d.get("status")
        if not isinstance(status, int) or isinstance(status, bool):
            raise MalformedEnvelopeError("response needs an integer 'status'")
        return cls(status=status, body=d.get("body"), headers=_headers(d.get("headers")))


def normalise_method(method: str | HttpMethod) -> str:
    try:
        return HttpMethod(str(getattr(method, "value", method)).upper()).value
    except ValueError:
        raise ValueError(f"unsupported method {method!r}") from None


def _headers(raw: Any) -> dict[str, str] | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedEnvelopeError("'headers' is not an object")
    return {str(k): str(v) for k, v in raw.items()}


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

@dataclass
class Envelope:
    """One decrypted message: a request or the response to one."""

    type: str
    request_id: str
    request: HttpRequest | None = None
    response: HttpResponse | None = None

    @classmethod
    def for_request(cls, request: HttpRequest, request_id: str | None = None) -> Envelope:
        return cls(
            type=EnvelopeType.REQUEST.value,
            request_id=request_id or new_request_id(),
            request=request,
        )

    @classmethod
    def for_response(cls, request_id: str, response: HttpResponse) -> Envelope:
        return cls(type=EnvelopeType.RESPONSE.value, request_id=request_id, response=response)

    @property
    def is_request(self) -> bool:
        return self.type == EnvelopeType.REQUEST

    # -- serialisation -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "requestId": self.request_id}
        if self.request is not None:
            d["request"] = self.request.to_dict()
        if self.response is not None:
            d["response"] = self.response.to_dict()
        return d

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> Envelope:
        """Parse decrypted bytes; raises :class:`MalformedEnvelopeError`."""
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedEnvelopeError(f"not JSON: {exc}") from exc
        if not isinstance(obj, dict):
            raise MalformedEnvelopeError("envelope is not an object")

        request_id = obj.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            raise MalformedEnvelopeError("missing 'requestId'")

        kind = obj.get("type")
        if kind == EnvelopeType.REQUEST:
            if "request" not in obj:
                raise MalformedEnvelopeError("request envelope without 'request'")
            return cls.for_request(HttpRequest.from_dict(obj["request"]), request_id)
        if kind == EnvelopeType.RESPONSE:
            if "response" not in obj:
                raise MalformedEnvelopeError("response envelope without 'response'")
            return cls.for_response(request_id, HttpResponse.from_dict(obj["response"]))
        raise MalformedEnvelopeError(f"unknown envelope type {kind!r}")


# ---------------------------------------------------------------------------
# Datagram
# ---------------------------------------------------------------------------

@dataclass
class Datagram:
    """The plaintext wrapper that actually goes over UDP."""

    cipher: str
    iv: str

    def to_bytes(self) -> bytes:
        return json.dumps({"cipher": self.cipher, "iv": self.iv}).encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> Datagram:
        """Parse raw UDP bytes; raises :class:`MalformedDatagramError`."""
        try:
            obj = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedDatagramError(f"not JSON: {exc}") from exc
        if not isinstance(obj, dict):
            raise MalformedDatagramError("datagram is not an object")
        cipher, iv = obj.get("cipher"), obj.get("iv")
        if not isinstance(cipher, str) or not isinstance(iv, str) or not cipher or not iv:
            raise MalformedDatagramError("datagram needs string 'cipher' and 'iv'")
        return cls(cipher=cipher, iv=iv)
