"""
Token cache and one-shot message stores.

Why: The session survives process restarts the way a browser keeps tokens in
local storage. The cache is a flat string key/value store under fixed key
names; the session manager is its only writer.

Concurrency: No locking. Two processes sharing one cache file follow
last-writer-wins; a refresh in one process may be clobbered by a stale write
from another. Accepted limitation.

Security: The file cache is created with 0600 permissions. Tokens are never
logged.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol
import json
import os
import tempfile

KEY_ID_TOKEN = "idToken"
KEY_ACCESS_TOKEN = "accessToken"
KEY_REFRESH_TOKEN = "refreshToken"
KEY_LAST_REFRESH_TIME = "lastRefreshTime"
KEY_INITIAL_SIGN_IN_TIME = "initialSignInTime"

SESSION_KEYS = (
    KEY_ID_TOKEN,
    KEY_ACCESS_TOKEN,
    KEY_REFRESH_TOKEN,
    KEY_LAST_REFRESH_TIME,
    KEY_INITIAL_SIGN_IN_TIME,
)


class TokenCache(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryTokenCache:
    """Process-local cache; used by tests and short-lived scripts."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class FileTokenCache:
    """JSON file cache, re-read on every access so other processes' writes show up."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            # Corrupt cache: behave as if empty; the next write replaces it.
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _store(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tokens-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._store(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if key in data:
            data.pop(key)
            self._store(data)


@dataclass(frozen=True)
class Session:
    id_token: Optional[str]
    access_token: Optional[str]
    refresh_token: Optional[str]
    last_refresh_time: Optional[float]
    initial_sign_in_time: Optional[float]

    @property
    def complete(self) -> bool:
        """All-or-nothing token invariant: every token must be present."""
        return bool(self.id_token and self.access_token and self.refresh_token)


def _float_or_none(raw: Optional[str]) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def read_session(cache: TokenCache) -> Session:
    return Session(
        id_token=cache.get(KEY_ID_TOKEN) or None,
        access_token=cache.get(KEY_ACCESS_TOKEN) or None,
        refresh_token=cache.get(KEY_REFRESH_TOKEN) or None,
        last_refresh_time=_float_or_none(cache.get(KEY_LAST_REFRESH_TIME)),
        initial_sign_in_time=_float_or_none(cache.get(KEY_INITIAL_SIGN_IN_TIME)),
    )


def clear_session(cache: TokenCache) -> None:
    for key in SESSION_KEYS:
        cache.remove(key)


class MessageStore:
    """One-shot messages carried across a navigation (e.g. `labAccessError`).

    Backed by any `TokenCache`-shaped store; pass a `FileTokenCache` to keep
    messages across process restarts. `pop` returns the message once and
    forgets it.
    """

    def __init__(self, backing: Optional[TokenCache] = None):
        self._backing: TokenCache = backing if backing is not None else InMemoryTokenCache()

    def put(self, key: str, message: str) -> None:
        self._backing.set(key, message)

    def pop(self, key: str) -> Optional[str]:
        message = self._backing.get(key)
        if message is not None:
            self._backing.remove(key)
        return message


__all__ = [
    "KEY_ID_TOKEN",
    "KEY_ACCESS_TOKEN",
    "KEY_REFRESH_TOKEN",
    "KEY_LAST_REFRESH_TIME",
    "KEY_INITIAL_SIGN_IN_TIME",
    "SESSION_KEYS",
    "TokenCache",
    "InMemoryTokenCache",
    "FileTokenCache",
    "Session",
    "read_session",
    "clear_session",
    "MessageStore",
]
