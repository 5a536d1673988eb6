"""
Minimal credential store client (Cognito user pool, public app client).

Why: Keep the provider protocol out of the session manager. The session
manager only talks to the `CredentialStore` protocol below; this module
provides the one concrete adapter, speaking the provider's JSON RPC over
HTTPS with httpx.

Security: Never log credentials, codes or tokens. This client does not store
or persist anything; the session manager owns the token cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import httpx

from labportal.errors import ProviderError


FLOW_USER_PASSWORD = "USER_PASSWORD_AUTH"
FLOW_REFRESH_TOKEN = "REFRESH_TOKEN_AUTH"

_TARGET_PREFIX = "AWSCognitoIdentityProviderService"
_CONTENT_TYPE = "application/x-amz-json-1.1"


@dataclass(frozen=True)
class CredentialStoreConfig:
    region: str  # e.g., us-east-1
    client_id: str  # user pool app client id (public, no secret)
    endpoint: str | None = None  # override for tests/local emulators
    timeout_seconds: float = 10.0

    @property
    def url(self) -> str:
        return self.endpoint or f"https://cognito-idp.{self.region}.amazonaws.com/"


@dataclass(frozen=True)
class TokenSet:
    id_token: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class UserRecord:
    username: str
    attributes: List[Dict[str, str]]


class CredentialStore(Protocol):
    """Operations consumed from the identity provider."""

    async def initiate_auth(self, *, flow: str, parameters: Dict[str, str]) -> Optional[TokenSet]: ...

    async def sign_up(self, *, username: str, password: str, attributes: List[Dict[str, str]]) -> None: ...

    async def confirm_sign_up(self, *, username: str, code: str) -> None: ...

    async def resend_confirmation_code(self, *, username: str) -> None: ...

    async def forgot_password(self, *, username: str) -> None: ...

    async def confirm_forgot_password(self, *, username: str, code: str, new_password: str) -> None: ...

    async def get_user(self, *, access_token: str) -> UserRecord: ...

    async def global_sign_out(self, *, access_token: str) -> None: ...


def _provider_error(resp: httpx.Response) -> ProviderError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    raw_type = str(body.get("__type") or "UnknownError")
    # Types may be namespaced, e.g. "com.amazon...#NotAuthorizedException"
    code = raw_type.rsplit("#", 1)[-1]
    message = body.get("message") or body.get("Message") or f"{code} ({resp.status_code})"
    return ProviderError(code, str(message))


class CognitoCredentialStore:
    """Talk to the user pool with the public client id.

    Each method maps 1:1 to a provider action and raises `ProviderError` with
    the provider's error type and message on any non-200 response.
    """

    def __init__(self, cfg: CredentialStoreConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self.cfg = cfg
        self._client = client

    async def _call(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Content-Type": _CONTENT_TYPE,
            "X-Amz-Target": f"{_TARGET_PREFIX}.{action}",
        }
        if self._client is not None:
            resp = await self._client.post(self.cfg.url, json=payload, headers=headers, timeout=self.cfg.timeout_seconds)
        else:
            async with httpx.AsyncClient(timeout=self.cfg.timeout_seconds) as client:
                resp = await client.post(self.cfg.url, json=payload, headers=headers)
        if resp.status_code != 200:
            raise _provider_error(resp)
        if not resp.content:
            return {}
        body = resp.json()
        return body if isinstance(body, dict) else {}

    async def initiate_auth(self, *, flow: str, parameters: Dict[str, str]) -> Optional[TokenSet]:
        """Run USER_PASSWORD_AUTH or REFRESH_TOKEN_AUTH.

        Returns None when the provider answers with a challenge instead of
        tokens (e.g. NEW_PASSWORD_REQUIRED); the caller treats that as failure.
        """
        body = await self._call(
            "InitiateAuth",
            {"AuthFlow": flow, "ClientId": self.cfg.client_id, "AuthParameters": parameters},
        )
        result = body.get("AuthenticationResult")
        if not isinstance(result, dict):
            return None
        return TokenSet(
            id_token=result.get("IdToken"),
            access_token=result.get("AccessToken"),
            refresh_token=result.get("RefreshToken"),
        )

    async def sign_up(self, *, username: str, password: str, attributes: List[Dict[str, str]]) -> None:
        await self._call(
            "SignUp",
            {
                "ClientId": self.cfg.client_id,
                "Username": username,
                "Password": password,
                "UserAttributes": attributes,
            },
        )

    async def confirm_sign_up(self, *, username: str, code: str) -> None:
        await self._call(
            "ConfirmSignUp",
            {"ClientId": self.cfg.client_id, "Username": username, "ConfirmationCode": code},
        )

    async def resend_confirmation_code(self, *, username: str) -> None:
        await self._call("ResendConfirmationCode", {"ClientId": self.cfg.client_id, "Username": username})

    async def forgot_password(self, *, username: str) -> None:
        await self._call("ForgotPassword", {"ClientId": self.cfg.client_id, "Username": username})

    async def confirm_forgot_password(self, *, username: str, code: str, new_password: str) -> None:
        await self._call(
            "ConfirmForgotPassword",
            {
                "ClientId": self.cfg.client_id,
                "Username": username,
                "ConfirmationCode": code,
                "Password": new_password,
            },
        )

    async def get_user(self, *, access_token: str) -> UserRecord:
        body = await self._call("GetUser", {"AccessToken": access_token})
        username = body.get("Username")
        if not username:
            raise ProviderError("InvalidUserData", "Invalid user data")
        return UserRecord(username=str(username), attributes=list(body.get("UserAttributes") or []))

    async def global_sign_out(self, *, access_token: str) -> None:
        await self._call("GlobalSignOut", {"AccessToken": access_token})


__all__ = [
    "FLOW_USER_PASSWORD",
    "FLOW_REFRESH_TOKEN",
    "CredentialStoreConfig",
    "TokenSet",
    "UserRecord",
    "CredentialStore",
    "CognitoCredentialStore",
]
