"""Error taxonomy for the sync layer.

Every failure the layer can observe is one of four kinds:

- :class:`TransportError`   – the request never produced a response
  (connection refused, DNS, timeout).
- :class:`ServerRejection`  – a response arrived but was marked unsuccessful;
  its message is shown to the user verbatim.
- :class:`AmbiguousResult`  – a successful response whose payload could not be
  mapped to the expected shape.
- :class:`StaleResponse`    – a response superseded by newer local state; it is
  discarded and never shown to the user.

Components above the client catch :class:`SyncError` and turn it into an
``error`` string with :func:`describe_error`.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every failure raised by the sync layer."""

    kind = "error"

    def __init__(self, message: str = "", *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class TransportError(SyncError):
    kind = "transport"


class ServerRejection(SyncError):
    kind = "server_rejection"


class AmbiguousResult(SyncError):
    kind = "ambiguous"


class StaleResponse(SyncError):
    kind = "stale"


def describe_error(exc: BaseException, fallback: str) -> str:
    """Return the user-facing message for *exc*.

    Only a :class:`ServerRejection` carries a server-provided message; every
    other failure is reported with *fallback*.
    """
    if isinstance(exc, ServerRejection):
        message = (exc.message or "").strip()
        if message:
            return message
    return fallback
