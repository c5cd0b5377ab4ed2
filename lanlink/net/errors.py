"""Exception hierarchy for lanlink.

Errors raised while processing unsolicited inbound datagrams
(``MalformedDatagramError``, ``MalformedEnvelopeError``, ``DecryptionError``)
are caught inside the engine, logged, and the datagram is dropped.  Everything
else surfaces to whoever made the call.
"""

from __future__ import annotations


class LanLinkError(Exception):
    """Base class for every lanlink error."""


# -- transport ---------------------------------------------------------------

class BindError(LanLinkError):
    """The UDP socket could not be bound (already started, or OS refused)."""


class NotStartedError(LanLinkError):
    """An operation needs a started transport or engine."""


class SendError(LanLinkError):
    """The OS rejected an outbound datagram."""


# -- cipher ------------------------------------------------------------------

class DecryptionError(LanLinkError):
    """Wrong key or IV, or a truncated / corrupted ciphertext."""


# -- pairing -----------------------------------------------------------------

class InvalidCodeError(LanLinkError):
    """A pairing code is unparseable or lacks a required field."""


class ExpiredCodeError(LanLinkError):
    """A pairing code's expiry is not in the future."""


class NoAddressError(LanLinkError):
    """This device has no reachable LAN address."""


class DeviceNotFoundError(LanLinkError):
    """The targeted device is not paired, or its pairing has expired."""


# -- request / response ------------------------------------------------------

class RequestTimeoutError(LanLinkError, TimeoutError):
    """No matching response arrived before the call's deadline."""


class MalformedDatagramError(LanLinkError):
    """An inbound datagram is not a ``{"cipher", "iv"}`` JSON object."""


class MalformedEnvelopeError(LanLinkError):
    """Decrypted bytes are not a valid request/response envelope."""


class EngineStoppedError(LanLinkError):
    """The engine was stopped while the call was still pending."""


class RequestFailedError(LanLinkError):
    """A peer answered with a non-200 status."""

    def __init__(self, status: int, body: object = None) -> None:
        super().__init__(f"request failed with status {status}")
        self.status = status
        self.body = body
