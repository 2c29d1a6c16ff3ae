"""ResourceClient protocol and its normalized result type."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from dashsync.errors import ServerRejection

#: Async callable returning a bearer token, or ``None`` when signed out.
TokenProvider = Callable[[], Awaitable["str | None"]]


@dataclass(frozen=True)
class ApiResult:
    """Outcome of one logical HTTP call, independent of the transport."""

    is_success: bool
    data: Any = None
    message: str = ""
    status: int | None = None

    def get_data(self) -> Any:
        return self.data

    def raise_for_failure(self, fallback: str = "Request failed") -> Any:
        """Return :attr:`data`, or raise :class:`ServerRejection` for a failed call."""
        if not self.is_success:
            raise ServerRejection(self.message or fallback, status=self.status)
        return self.data

    @classmethod
    def ok(cls, data: Any = None, message: str = "", status: int | None = 200) -> "ApiResult":
        return cls(True, data, message, status)

    @classmethod
    def fail(cls, message: str = "", status: int | None = None, data: Any = None) -> "ApiResult":
        return cls(False, data, message, status)


@runtime_checkable
class ResourceClient(Protocol):
    """Common interface shared by every client the sync layer talks through.

    Implementations return an :class:`ApiResult` for any response the server
    produced and raise :class:`~dashsync.errors.TransportError` when there was
    no response at all.
    """

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> ApiResult:
        """Issue ``GET path``."""
        ...

    async def post(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        """Issue ``POST path`` with a JSON *body*."""
        ...

    async def put(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        """Issue ``PUT path`` with a JSON *body*."""
        ...

    async def delete(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        """Issue ``DELETE path``."""
        ...
