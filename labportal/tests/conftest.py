"""
Pytest configuration and shared fakes for labportal tests.

Why: Force AnyIO to use the asyncio backend, and give every test the same
three collaborators: a recording fake of the credential store, a routable
`httpx.MockTransport` backend and a controllable clock.
"""
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple
import json

import anyio
import httpx
import pytest

from labportal.api import BackendApi
from labportal.identity_access.credentials import FLOW_REFRESH_TOKEN, FLOW_USER_PASSWORD, TokenSet, UserRecord
from labportal.identity_access.session import SessionManager
from labportal.identity_access.stores import (
    KEY_ACCESS_TOKEN,
    KEY_ID_TOKEN,
    KEY_INITIAL_SIGN_IN_TIME,
    KEY_LAST_REFRESH_TIME,
    KEY_REFRESH_TOKEN,
    InMemoryTokenCache,
)

API_BASE = "https://api.test"
NOW = 1_700_000_000.0


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def user_attributes(*, role: str = "student", full_name: Optional[str] = "George Burdell", student_id: Optional[str] = "903000001") -> List[Dict[str, str]]:
    attrs = [
        {"Name": "email", "Value": "gburdell3@gatech.edu"},
        {"Name": "custom:role", "Value": role},
    ]
    if full_name:
        attrs.append({"Name": "custom:fullName", "Value": full_name})
    if student_id:
        attrs.append({"Name": "custom:studentId", "Value": student_id})
    return attrs


class FakeCredentialStore:
    """Records every call.

    `errors` maps a call name (`sign_in`, `refresh`, `get_user`, ...) to an
    exception, or to a list consumed one entry per call.
    """

    def __init__(self, attributes: Optional[List[Dict[str, str]]] = None):
        self.calls: List[Tuple[str, dict]] = []
        self.errors: Dict[str, object] = {}
        self.attributes = attributes if attributes is not None else user_attributes()
        self.sign_in_tokens: Optional[TokenSet] = TokenSet("id-1", "access-1", "refresh-1")
        self.refresh_tokens: Optional[TokenSet] = TokenSet("id-2", "access-2", None)
        self.refresh_gate: Optional[anyio.Event] = None

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def _record(self, name: str, **kwargs) -> None:
        self.calls.append((name, kwargs))
        err = self.errors.get(name)
        if isinstance(err, list):
            # One entry per call; None lets that call succeed.
            err = err.pop(0) if err else None
        if err is not None:
            raise err

    async def initiate_auth(self, *, flow, parameters):
        key = "sign_in" if flow == FLOW_USER_PASSWORD else "refresh"
        self._record(key, flow=flow, parameters=parameters)
        if flow == FLOW_REFRESH_TOKEN:
            if self.refresh_gate is not None:
                await self.refresh_gate.wait()
            return self.refresh_tokens
        return self.sign_in_tokens

    async def sign_up(self, *, username, password, attributes):
        self._record("sign_up", username=username, attributes=attributes)

    async def confirm_sign_up(self, *, username, code):
        self._record("confirm_sign_up", username=username, code=code)

    async def resend_confirmation_code(self, *, username):
        self._record("resend_confirmation_code", username=username)

    async def forgot_password(self, *, username):
        self._record("forgot_password", username=username)

    async def confirm_forgot_password(self, *, username, code, new_password):
        self._record("confirm_forgot_password", username=username, code=code)

    async def get_user(self, *, access_token):
        self._record("get_user", access_token=access_token)
        return UserRecord(username="gburdell3", attributes=list(self.attributes))

    async def global_sign_out(self, *, access_token):
        self._record("global_sign_out", access_token=access_token)


class RecordingBackend:
    """Route table for `httpx.MockTransport`; unknown routes answer 404."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str], Callable[[httpx.Request], object]] = {}

    def on(self, method: str, url_or_path: str, status: int = 200, *, json_body=None, text: Optional[str] = None, handler=None) -> None:
        if handler is None:

            def handler(request: httpx.Request, _s=status, _j=json_body, _t=text):
                if _t is not None:
                    return httpx.Response(_s, text=_t)
                return httpx.Response(_s, json=_j)

        url = url_or_path if url_or_path.startswith("http") else f"{API_BASE}{url_or_path}"
        self._routes[(method.upper(), url)] = handler

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        netloc = request.url.netloc.decode("ascii")
        key = (request.method, f"{request.url.scheme}://{netloc}{request.url.path}")
        handler = self._routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def body(request: httpx.Request) -> dict:
        return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials() -> FakeCredentialStore:
    return FakeCredentialStore()


@pytest.fixture
def backend() -> RecordingBackend:
    return RecordingBackend()


@pytest.fixture
def api(backend: RecordingBackend) -> BackendApi:
    return BackendApi(API_BASE, client=httpx.AsyncClient(transport=httpx.MockTransport(backend)))


def signed_in_cache(*, now: float = NOW, last_refresh_age: float = 60.0, session_age: float = 3600.0) -> InMemoryTokenCache:
    return InMemoryTokenCache(
        {
            KEY_ID_TOKEN: "id-0",
            KEY_ACCESS_TOKEN: "access-0",
            KEY_REFRESH_TOKEN: "refresh-0",
            KEY_LAST_REFRESH_TIME: str(now - last_refresh_age),
            KEY_INITIAL_SIGN_IN_TIME: str(now - session_age),
        }
    )


@pytest.fixture
def session(credentials: FakeCredentialStore, clock: FakeClock, api: BackendApi) -> SessionManager:
    """Session with a complete, fresh token set in the cache (not yet validated)."""
    return SessionManager(credentials=credentials, cache=signed_in_cache(now=clock.now), api=api, clock=clock)