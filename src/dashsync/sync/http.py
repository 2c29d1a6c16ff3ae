"""httpx-backed ResourceClient.

A thin async HTTP client for the dashboard API.  Every call is sent to
``{base_url}{api_prefix}{path}`` and the response is folded into an
:class:`~dashsync.sync.base.ApiResult`.

Response envelope
-----------------
The API wraps most payloads as::

    {"success": true, "message": "Models listed successfully", "data": [...]}

When a JSON object carries a ``success`` key its ``data`` member is unwrapped
and ``success: false`` marks the call failed even on HTTP 200.  Any other body
is passed through untouched.

Authentication
--------------
A bearer token is attached when one is available: first from the async
``token_provider`` (if given), then from the static ``api_token``.  Failing to
obtain a token never fails the request; it simply goes out unauthenticated.

Environment variables (all optional; direct kwargs take precedence):
    DASHSYNC_API_URL     – base URL of the API (default ``http://localhost:8000``)
    DASHSYNC_API_TOKEN   – static bearer token
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import httpx

from dashsync.errors import TransportError
from dashsync.sync.base import ApiResult, TokenProvider

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"
DEFAULT_API_PREFIX = "/api/v1"


class HttpResourceClient:
    """ResourceClient implementation over :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        api_prefix: str = DEFAULT_API_PREFIX,
        api_token: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or os.getenv("DASHSYNC_API_URL", "") or DEFAULT_BASE_URL).rstrip("/")
        self._prefix = "/" + api_prefix.strip("/") if api_prefix.strip("/") else ""
        self._token = api_token or os.getenv("DASHSYNC_API_TOKEN", "")
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self._base_url + self._prefix,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url + self._prefix

    # ------------------------------------------------------------------
    # Verbs
    # ------------------------------------------------------------------

    async def get(self, path: str, params: Mapping[str, Any] | None = None) -> ApiResult:
        return await self._send("GET", path, params=params)

    async def post(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        return await self._send("POST", path, body=body, params=params)

    async def put(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        return await self._send("PUT", path, body=body, params=params)

    async def delete(
        self, path: str, body: Any = None, params: Mapping[str, Any] | None = None
    ) -> ApiResult:
        return await self._send("DELETE", path, body=body, params=params)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _auth_headers(self) -> dict[str, str]:
        token: str | None = None
        if self._token_provider is not None:
            try:
                token = await self._token_provider()
            except Exception as exc:  # noqa: BLE001
                # Token errors never block the request
                logger.debug("Token provider failed, sending unauthenticated: %s", exc)
                token = None
        token = token or self._token
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> ApiResult:
        headers = await self._auth_headers()
        query = {k: _query_value(v) for k, v in (params or {}).items() if v is not None}
        try:
            response = await self._client.request(
                method,
                path,
                json=body,
                params=query or None,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            # Decoding and redirect errors count as transport failures too
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        return normalize_response(response)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpResourceClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()


def _query_value(value: Any) -> Any:
    # httpx renders bools as "True"/"False"; the API expects lowercase
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def normalize_response(response: httpx.Response) -> ApiResult:
    """Fold an :class:`httpx.Response` into an :class:`ApiResult`."""
    payload: Any = None
    if response.content:
        try:
            payload = response.json()
        except ValueError:
            payload = response.text

    message = ""
    if isinstance(payload, dict):
        raw = payload.get("message") or payload.get("detail") or ""
        message = raw if isinstance(raw, str) else str(raw)

    if not response.is_success:
        return ApiResult.fail(message or response.reason_phrase, status=response.status_code, data=payload)

    if isinstance(payload, dict) and "success" in payload:
        if payload["success"] is False:
            return ApiResult.fail(message, status=response.status_code, data=payload.get("data"))
        return ApiResult.ok(payload.get("data"), message, status=response.status_code)

    return ApiResult.ok(payload, message, status=response.status_code)
