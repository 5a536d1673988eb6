"""
Configuration and startup checks for the portal client.

Why: Keep every environment variable the client reads in one place so the
CLI, tests and library users agree on defaults. Mirrors the server-side
guard idea: production-like environments refuse obviously insecure endpoints.

Permissions: Pure configuration; reads environment variables only.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
from urllib.parse import urlparse


DEFAULT_REGION = "us-east-1"
DEFAULT_EMAIL_SUFFIX = "@gatech.edu"
DEFAULT_TOKEN_CACHE = Path("~/.config/labportal/tokens.json")


@dataclass(frozen=True)
class Settings:
    api_endpoint: str
    region: str
    user_pool_client_id: str
    allowed_email_suffix: str
    token_cache_path: Path
    http_timeout_seconds: int
    environment: str
    credential_endpoint_override: str = ""

    @property
    def credential_endpoint(self) -> str:
        """Identity provider URL; `LABPORTAL_CREDENTIAL_ENDPOINT` overrides it (local emulators)."""
        return self.credential_endpoint_override or f"https://cognito-idp.{self.region}.amazonaws.com/"

    @property
    def message_store_path(self) -> Path:
        """One-shot UI messages live next to the token cache."""
        return self.token_cache_path.with_name("messages.json")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value <= 0 or value > 300:
        raise ValueError(f"{name} out of range (1..300), got: {value}")
    return value


def _is_prod_like(env: str) -> bool:
    return (env or "").lower() in {"prod", "production", "stage", "staging"}


def load_settings() -> Settings:
    """Read settings from the environment.

    Behavior:
        - `LABPORTAL_ALLOWED_EMAIL_SUFFIX` is trimmed and lower-cased; a missing
          leading "@" is added.
        - `LABPORTAL_TOKEN_CACHE` supports `~` expansion.
        - `LABPORTAL_HTTP_TIMEOUT` must be within 1..300 seconds.
        - `LABPORTAL_CREDENTIAL_ENDPOINT` replaces the regional provider URL.
    """
    suffix = (os.getenv("LABPORTAL_ALLOWED_EMAIL_SUFFIX") or DEFAULT_EMAIL_SUFFIX).strip().lower()
    if suffix and not suffix.startswith("@"):
        suffix = f"@{suffix}"
    cache = os.getenv("LABPORTAL_TOKEN_CACHE") or str(DEFAULT_TOKEN_CACHE)
    return Settings(
        api_endpoint=(os.getenv("LABPORTAL_API_ENDPOINT") or "").strip(),
        region=(os.getenv("LABPORTAL_REGION") or DEFAULT_REGION).strip(),
        user_pool_client_id=(os.getenv("LABPORTAL_USER_POOL_CLIENT_ID") or "").strip(),
        allowed_email_suffix=suffix,
        token_cache_path=Path(cache).expanduser(),
        http_timeout_seconds=_int_env("LABPORTAL_HTTP_TIMEOUT", 30),
        environment=(os.getenv("LABPORTAL_ENV") or "dev").strip().lower(),
        credential_endpoint_override=(os.getenv("LABPORTAL_CREDENTIAL_ENDPOINT") or "").strip(),
    )


def ensure_secure_config(settings: Settings) -> None:
    """Fail fast on unusable or insecure configuration.

    Checks:
    - The API endpoint and client id must be set.
    - In prod-like environments the API endpoint must use https.
    """
    if not settings.api_endpoint:
        raise SystemExit("Refusing to start: LABPORTAL_API_ENDPOINT is not set.")
    if not settings.user_pool_client_id:
        raise SystemExit("Refusing to start: LABPORTAL_USER_POOL_CLIENT_ID is not set.")
    scheme = urlparse(settings.api_endpoint).scheme.lower()
    if scheme not in {"http", "https"}:
        raise SystemExit("Refusing to start: LABPORTAL_API_ENDPOINT must start with http:// or https://")
    if _is_prod_like(settings.environment) and scheme != "https":
        raise SystemExit(
            "Refusing to start: LABPORTAL_API_ENDPOINT must use https in production (got http)."
        )


__all__ = ["Settings", "load_settings", "ensure_secure_config"]
