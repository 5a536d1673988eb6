"""
Thin async adapter for the portal's backend REST API.

Why: Every context (learning, teaching, identity) needs the same three
things: join the base URL without double slashes, attach the bearer token,
and turn JSON error payloads into readable messages. Keeping this in one
place lets tests swap the transport with `httpx.MockTransport`.

Security: The bearer token is attached per request and never logged.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, TypeVar

import httpx
from pydantic import BaseModel

from labportal.errors import PortalError

M = TypeVar("M", bound=BaseModel)


class BackendApi:
    def __init__(self, base_url: str, *, client: httpx.AsyncClient | None = None, timeout: float = 30.0):
        self.base_url = (base_url or "").rstrip("/")
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: str,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> httpx.Response:
        """Send an authenticated request; never raises on HTTP status.

        `params` entries with None values are dropped so optional filters can
        be passed through unconditionally.
        """
        hdrs: Dict[str, str] = {"Authorization": f"Bearer {token}"}
        if json is not None:
            hdrs["Content-Type"] = "application/json"
        if headers:
            hdrs.update(headers)
        clean = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
        return await self.client.request(method, self.url(path), json=json, params=clean or None, headers=hdrs)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BackendApi":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


def error_message(resp: httpx.Response, default: str, *, field: str = "error") -> str:
    """Pick a readable message from a JSON error body, falling back to `default`."""
    try:
        body = resp.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        value = body.get(field)
        if isinstance(value, str) and value.strip():
            return value
    return default


def describe_failure(prefix: str, resp: httpx.Response) -> str:
    """`"<prefix>: <status> <raw body>"` for diagnostics surfaced to the user."""
    return f"{prefix}: {resp.status_code} {resp.text}".rstrip()


def parse_model(model: type[M], resp: httpx.Response) -> M:
    """Validate a JSON object body into `model`; malformed bodies raise `PortalError`."""
    try:
        return model.model_validate(resp.json())
    except ValueError as exc:  # includes pydantic.ValidationError
        raise PortalError("Unexpected response from backend") from exc


def parse_models(model: type[M], resp: httpx.Response) -> List[M]:
    """Validate a JSON array body into a list of `model`."""
    try:
        payload = resp.json()
        if not isinstance(payload, list):
            raise ValueError("expected a JSON array")
        return [model.model_validate(item) for item in payload]
    except ValueError as exc:
        raise PortalError("Unexpected response from backend") from exc


def json_object(resp: httpx.Response) -> Dict[str, Any]:
    """Return a JSON object body; anything else raises `PortalError`."""
    try:
        body = resp.json()
    except ValueError as exc:
        raise PortalError("Unexpected response from backend") from exc
    if not isinstance(body, dict):
        raise PortalError("Unexpected response from backend")
    return body


__all__ = ["BackendApi", "error_message", "describe_failure", "parse_model", "parse_models", "json_object"]
