"""
Centralized storage configuration for video uploads.

Intent:
    Provide a single source of truth for the upload size cap used by the
    upload pipeline and the CLI.

Behavior:
    - VIDEO_MAX_UPLOAD_BYTES is the contract maximum (500 MiB).
    - get_video_max_upload_bytes() reads LABPORTAL_MAX_UPLOAD_BYTES; the env may
      lower the limit but never raise it above the contract maximum.

Permissions:
    Pure configuration; no external calls or privileges required.
"""
from __future__ import annotations

import os


VIDEO_MAX_UPLOAD_BYTES = 500 * 1024 * 1024


def _parse_int_env(name: str, default: int, *, contract_max: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if value <= 0:
        return default
    if isinstance(contract_max, int) and contract_max > 0:
        value = min(value, contract_max)
    return value


def get_video_max_upload_bytes() -> int:
    """Maximum upload size for video evidence (default/clamped 500 MiB)."""
    return _parse_int_env("LABPORTAL_MAX_UPLOAD_BYTES", VIDEO_MAX_UPLOAD_BYTES, contract_max=VIDEO_MAX_UPLOAD_BYTES)


__all__ = ["VIDEO_MAX_UPLOAD_BYTES", "get_video_max_upload_bytes"]
