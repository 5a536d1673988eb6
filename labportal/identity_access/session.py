"""
Session manager: sign-in/up/out, token refresh and the derived auth state.

Why: This is the single writer of the token cache and of the auth state.
Everything else (upload pipeline, review queue, lab catalog) receives the
manager as an explicit handle and only reads: `state` snapshots and
`bearer_token()`.

State machine:
    LOADING ──validated──> AUTHENTICATED | NEEDS_NAME
    LOADING ──no/invalid tokens, refresh failed──> UNAUTHENTICATED
    UNAUTHENTICATED ──sign_in──> LOADING
    AUTHENTICATED | NEEDS_NAME ──sign_out (user, ceiling, dead token)──> UNAUTHENTICATED
    NEEDS_NAME ──update_user_attributes──> AUTHENTICATED

Refresh policy:
    Every REFRESH_THRESHOLD the periodic check refreshes tokens that are due
    within the next REFRESH_THRESHOLD. A failed refresh only forces sign-out
    once the full TOKEN_EXPIRATION has elapsed. SESSION_CEILING (one week
    since the initial sign-in) is a hard limit that refresh cannot extend.

Concurrency:
    A sign-out bumps `_epoch`. A refresh that observes a different epoch
    after its network call discards the result, so clearing always wins.

Security: Never log tokens, passwords or verification codes.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, List, Optional
import logging
import time

import anyio
import httpx

from labportal.api import BackendApi, error_message
from labportal.config import DEFAULT_EMAIL_SUFFIX
from labportal.errors import (
    InvalidCredentials,
    InvalidDomain,
    NotAuthenticated,
    PortalError,
    ProviderError,
    remap_provider_error,
)

from .credentials import FLOW_REFRESH_TOKEN, FLOW_USER_PASSWORD, CredentialStore, TokenSet
from .domain import ATTR_EMAIL, ATTR_ROLE, DEFAULT_ROLE, AuthenticatedUser, email_has_suffix, parse_user_attributes
from .stores import (
    KEY_ACCESS_TOKEN,
    KEY_ID_TOKEN,
    KEY_INITIAL_SIGN_IN_TIME,
    KEY_LAST_REFRESH_TIME,
    KEY_REFRESH_TOKEN,
    TokenCache,
    clear_session,
    read_session,
)
from .tokens import token_expired

logger = logging.getLogger("labportal.identity_access")

TOKEN_EXPIRATION = 60 * 60  # seconds
REFRESH_THRESHOLD = 10 * 60  # refresh 10 minutes before expiration
SESSION_CEILING = 7 * 24 * 60 * 60  # one week since the initial sign-in

_CREDENTIAL_REJECTIONS = frozenset({"NotAuthorizedException", "UserNotFoundException"})

# Network failures that the manager treats like provider failures.
_CALL_ERRORS = (PortalError, httpx.HTTPError)


class AuthStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    NEEDS_NAME = "authenticated_needs_name"


@dataclass(frozen=True)
class AuthState:
    """Immutable snapshot handed to consumers."""

    status: AuthStatus = AuthStatus.LOADING
    user: Optional[AuthenticatedUser] = None
    busy: bool = False
    error: Optional[str] = None
    show_name_prompt: bool = False
    view_as_student: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.status in (AuthStatus.AUTHENTICATED, AuthStatus.NEEDS_NAME)

    @property
    def effective_role(self) -> Optional[str]:
        """Role used for access decisions; staff viewing as student count as student."""
        if not self.is_authenticated or self.user is None:
            return None
        if self.user.is_staff and self.view_as_student:
            return "student"
        return self.user.role


Listener = Callable[[AuthState], None]


class SessionManager:
    def __init__(
        self,
        *,
        credentials: CredentialStore,
        cache: TokenCache,
        api: BackendApi | None = None,
        allowed_email_suffix: str = DEFAULT_EMAIL_SUFFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._credentials = credentials
        self._cache = cache
        self._api = api
        self._suffix = allowed_email_suffix
        self._clock = clock
        self._state = AuthState()
        self._listeners: List[Listener] = []
        self._epoch = 0

    # --- Observable state --------------------------------------------------------

    @property
    def state(self) -> AuthState:
        """Current snapshot; never reports authenticated without a full token set."""
        st = self._state
        if st.is_authenticated and not read_session(self._cache).complete:
            return AuthState(status=AuthStatus.UNAUTHENTICATED)
        return st

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener` for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _set_state(self, **changes: object) -> None:
        new = replace(self._state, **changes)
        if new == self._state:
            return
        self._state = new
        for listener in list(self._listeners):
            listener(new)

    def _set_authenticated(self, user: AuthenticatedUser, *, show_prompt: bool) -> None:
        self._set_state(
            status=AuthStatus.AUTHENTICATED if user.full_name else AuthStatus.NEEDS_NAME,
            user=user,
            busy=False,
            error=None,
            show_name_prompt=show_prompt and not user.full_name,
        )

    def _set_signed_out(self, *, error: Optional[str] = None) -> None:
        self._set_state(
            status=AuthStatus.UNAUTHENTICATED,
            user=None,
            busy=False,
            error=error,
            show_name_prompt=False,
            view_as_student=False,
        )

    # --- Token access for consumers -----------------------------------------------

    def bearer_token(self) -> str:
        """Return the id token used as bearer for the backend API."""
        token = read_session(self._cache).id_token
        if not token:
            raise NotAuthenticated("No authentication token found")
        return token

    def _store_tokens(self, tokens: TokenSet, *, now: float, initial: bool) -> None:
        self._cache.set(KEY_ID_TOKEN, tokens.id_token or "")
        self._cache.set(KEY_ACCESS_TOKEN, tokens.access_token or "")
        if tokens.refresh_token:
            self._cache.set(KEY_REFRESH_TOKEN, tokens.refresh_token)
        self._cache.set(KEY_LAST_REFRESH_TIME, str(now))
        if initial:
            self._cache.set(KEY_INITIAL_SIGN_IN_TIME, str(now))

    # --- Sign in / out -------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> None:
        """Exchange credentials for tokens and load the user's attributes.

        Raises `InvalidCredentials` (carrying the raw provider message) when
        the provider rejects the pair; other provider errors pass through,
        remapped for quota/attempt limits.
        """
        self._set_state(status=AuthStatus.LOADING, busy=True, error=None)
        stored = False
        try:
            tokens = await self._credentials.initiate_auth(
                flow=FLOW_USER_PASSWORD,
                parameters={"USERNAME": email, "PASSWORD": password},
            )
            if tokens is None or not (tokens.id_token and tokens.access_token and tokens.refresh_token):
                raise PortalError("Login failed")
            self._store_tokens(tokens, now=self._clock(), initial=True)
            stored = True
            record = await self._credentials.get_user(access_token=tokens.access_token)
        except ProviderError as exc:
            err = self._sign_in_error(exc)
            if stored:
                clear_session(self._cache)
            self._set_signed_out(error=err.message)
            if err is exc:
                raise
            raise err from exc
        except _CALL_ERRORS as exc:
            if stored:
                clear_session(self._cache)
            self._set_signed_out(error=str(exc))
            raise
        self._set_authenticated(parse_user_attributes(record.attributes), show_prompt=True)
        logger.info("sign-in completed")

    @staticmethod
    def _sign_in_error(exc: ProviderError) -> PortalError:
        if exc.provider_code in _CREDENTIAL_REJECTIONS:
            return InvalidCredentials(exc.message, provider_message=exc.message)
        return remap_provider_error(exc)

    async def sign_out(self) -> None:
        """Revoke best-effort, then unconditionally clear the local session.

        Idempotent: without a session no provider call is made.
        """
        self._epoch += 1
        access_token = read_session(self._cache).access_token
        if access_token:
            try:
                await self._credentials.global_sign_out(access_token=access_token)
            except _CALL_ERRORS as exc:
                logger.warning("global sign-out failed (%s); clearing local session anyway", type(exc).__name__)
        clear_session(self._cache)
        self._set_signed_out()

    # --- Registration & password flows ------------------------------------------------

    async def _passthrough(self, call: Callable[[], Awaitable[None]]) -> None:
        self._set_state(busy=True, error=None)
        try:
            await call()
        except ProviderError as exc:
            err = remap_provider_error(exc)
            self._set_state(busy=False, error=err.message)
            if err is exc:
                raise
            raise err from exc
        except _CALL_ERRORS as exc:
            self._set_state(busy=False, error=str(exc))
            raise
        self._set_state(busy=False)

    async def sign_up(self, email: str, password: str) -> None:
        """Register a student account; confirmation happens separately.

        The institution suffix is checked locally before any provider call.
        """
        if not email_has_suffix(email, self._suffix):
            err = InvalidDomain(f"Only {self._suffix} email addresses are allowed")
            self._set_state(error=err.message)
            raise err
        attributes = [
            {"Name": ATTR_EMAIL, "Value": email},
            {"Name": ATTR_ROLE, "Value": DEFAULT_ROLE},
        ]
        await self._passthrough(
            lambda: self._credentials.sign_up(username=email, password=password, attributes=attributes)
        )

    async def confirm_sign_up(self, email: str, code: str) -> None:
        await self._passthrough(lambda: self._credentials.confirm_sign_up(username=email, code=code))

    async def resend_verification_code(self, email: str) -> None:
        await self._passthrough(lambda: self._credentials.resend_confirmation_code(username=email))

    async def forgot_password(self, email: str) -> None:
        await self._passthrough(lambda: self._credentials.forgot_password(username=email))

    async def confirm_forgot_password(self, email: str, code: str, new_password: str) -> None:
        await self._passthrough(
            lambda: self._credentials.confirm_forgot_password(username=email, code=code, new_password=new_password)
        )

    # --- Refresh --------------------------------------------------------------------

    async def refresh_tokens(self, refresh_token: str) -> bool:
        """Exchange the refresh token for new id/access tokens.

        Returns False when the provider hands back no tokens or when a
        sign-out happened while the call was in flight. Provider errors are
        re-raised; the caller decides whether to sign out.
        """
        epoch = self._epoch
        try:
            tokens = await self._credentials.initiate_auth(
                flow=FLOW_REFRESH_TOKEN,
                parameters={"REFRESH_TOKEN": refresh_token},
            )
            if tokens is None or not (tokens.id_token and tokens.access_token):
                return False
            if epoch != self._epoch:
                logger.info("discarding token refresh that finished after sign-out")
                return False
            self._store_tokens(tokens, now=self._clock(), initial=False)
            record = await self._credentials.get_user(access_token=tokens.access_token)
        except _CALL_ERRORS as exc:
            logger.warning("token refresh failed (%s)", type(exc).__name__)
            raise
        if epoch != self._epoch:
            return False
        user = parse_user_attributes(record.attributes)
        prev = self._state
        self._set_authenticated(user, show_prompt=prev.show_name_prompt or not prev.is_authenticated)
        return True

    async def refresh_token_if_needed(self) -> None:
        """Periodic check; see module docstring for the policy."""
        session = read_session(self._cache)
        now = self._clock()
        if session.initial_sign_in_time is not None and now - session.initial_sign_in_time > SESSION_CEILING:
            logger.info("session exceeded one-week ceiling; signing out")
            await self.sign_out()
            return
        if not self._state.is_authenticated:
            return
        if session.last_refresh_time is None or not session.refresh_token:
            return
        elapsed = now - session.last_refresh_time
        if elapsed <= TOKEN_EXPIRATION - REFRESH_THRESHOLD:
            return
        try:
            await self.refresh_tokens(session.refresh_token)
        except _CALL_ERRORS:
            # Token is certainly dead only after the full expiration window.
            if elapsed > TOKEN_EXPIRATION:
                await self.sign_out()

    async def run_refresh_loop(self, interval: float = REFRESH_THRESHOLD) -> None:
        """Run the periodic check until cancelled (e.g. via a task group)."""
        while True:
            await anyio.sleep(interval)
            await self.refresh_token_if_needed()

    # --- Startup validation ------------------------------------------------------------

    async def check_auth_state(self) -> None:
        """Re-derive the auth state from the cache on startup.

        Behavior:
            - Session older than SESSION_CEILING: sign out.
            - Refresh token without id/access token: refresh first.
            - Missing tokens: clear and report unauthenticated (no network).
            - Refresh due soon: try it, keep going with current tokens on failure.
            - Otherwise validate the access token (GetUser); on failure try one
              refresh and sign out when that fails too.
        """
        self._set_state(status=AuthStatus.LOADING)
        session = read_session(self._cache)
        now = self._clock()

        if session.initial_sign_in_time is not None and now - session.initial_sign_in_time > SESSION_CEILING:
            logger.info("session exceeded one-week ceiling; signing out")
            await self.sign_out()
            return

        if session.refresh_token and not (session.access_token and session.id_token):
            try:
                if await self.refresh_tokens(session.refresh_token):
                    return
            except _CALL_ERRORS:
                await self.sign_out()
                return
            session = read_session(self._cache)

        if not session.complete:
            clear_session(self._cache)
            self._set_signed_out()
            return

        if session.last_refresh_time is not None and now - session.last_refresh_time > TOKEN_EXPIRATION - REFRESH_THRESHOLD:
            try:
                if await self.refresh_tokens(session.refresh_token):
                    return
            except _CALL_ERRORS:
                pass  # continue with existing tokens if they are still valid
            session = read_session(self._cache)
            if not session.complete:
                self._set_signed_out()
                return

        try:
            if token_expired(session.access_token, now=now):
                raise NotAuthenticated("Access token expired")
            record = await self._credentials.get_user(access_token=session.access_token)
        except _CALL_ERRORS:
            try:
                if await self.refresh_tokens(session.refresh_token):
                    return
            except _CALL_ERRORS:
                pass
            await self.sign_out()
            return

        if session.last_refresh_time is None:
            self._cache.set(KEY_LAST_REFRESH_TIME, str(now))
        if session.initial_sign_in_time is None:
            self._cache.set(KEY_INITIAL_SIGN_IN_TIME, str(now))
        self._set_authenticated(parse_user_attributes(record.attributes), show_prompt=True)

    # --- Profile -------------------------------------------------------------------------

    async def update_user_attributes(self, full_name: str) -> None:
        """Persist the user's full name through the backend API.

        The backend (not the credential store) stores the name so it can also
        denormalize it into submission records.
        """
        session = read_session(self._cache)
        if not session.id_token or not session.access_token:
            err = NotAuthenticated("No authentication tokens found")
            self._set_state(error=err.message)
            raise err
        name = (full_name or "").strip()
        if not name:
            err = PortalError("Full name is required")
            self._set_state(error=err.message)
            raise err
        if self._api is None:
            raise PortalError("Backend API is not configured")
        self._set_state(busy=True, error=None)
        try:
            resp = await self._api.request(
                "POST",
                "/auth/update-attributes",
                token=session.id_token,
                json={"fullName": name},
                headers={"X-Access-Token": session.access_token},
            )
        except httpx.HTTPError as exc:
            self._set_state(busy=False, error=str(exc))
            raise
        if not resp.is_success:
            err = PortalError(error_message(resp, "Failed to update user attributes"))
            self._set_state(busy=False, error=err.message)
            raise err
        user = self._state.user.with_full_name(name) if self._state.user else None
        changes: dict = {"user": user, "busy": False, "show_name_prompt": False}
        if user is not None and self._state.is_authenticated:
            changes["status"] = AuthStatus.AUTHENTICATED
        self._set_state(**changes)

    def dismiss_name_prompt(self) -> None:
        """Hide the name prompt; the user still counts as needing a name."""
        self._set_state(show_name_prompt=False)

    def toggle_view_as_student(self) -> None:
        self._set_state(view_as_student=not self._state.view_as_student)


__all__ = [
    "TOKEN_EXPIRATION",
    "REFRESH_THRESHOLD",
    "SESSION_CEILING",
    "AuthStatus",
    "AuthState",
    "SessionManager",
]
