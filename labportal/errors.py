"""
Error taxonomy shared by all portal contexts.

Intent:
    Give callers (CLI, tests, future UIs) a small, stable set of exception
    types to branch on. Each error carries a machine-readable `code` and a
    human-readable message that is safe to show verbatim.

Design:
    - `PortalError` is the base and doubles as the generic "unknown" error.
    - Provider-originated errors keep the raw provider text on
      `provider_message` so the sign-up/sign-in forms can show it.
    - `remap_provider_error` recognizes quota/attempt-limit messages by
      substring and turns them into user-facing guidance.
"""
from __future__ import annotations

from typing import Optional


class PortalError(Exception):
    """Base error; `code == "unknown"` marks a plain pass-through message."""

    code = "unknown"

    def __init__(self, message: str, *, provider_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider_message = provider_message


class InvalidCredentials(PortalError):
    """The credential store rejected the email/password pair."""

    code = "invalid_credentials"


class InvalidDomain(PortalError):
    """Sign-up email does not carry the institution's suffix."""

    code = "invalid_domain"


class NotAuthenticated(PortalError):
    """A token was required but the session does not hold one."""

    code = "not_authenticated"


class NoUploadTarget(PortalError):
    """The backend did not hand out a presigned upload URL."""

    code = "no_upload_target"


class TransferFailed(PortalError):
    """The binary PUT to the object store failed."""

    code = "transfer_failed"


class FeedbackRequired(PortalError):
    """Rejections must explain themselves."""

    code = "feedback_required"


class AccessDenied(PortalError):
    """The backend refused access to a (locked) lab."""

    code = "access_denied"


class ProviderQuotaExceeded(PortalError):
    code = "provider_quota_exceeded"


class ProviderAttemptLimitExceeded(PortalError):
    code = "provider_attempt_limit_exceeded"


class ProviderError(PortalError):
    """Raw error returned by the credential store.

    `provider_code` is the provider's error type (e.g. ``NotAuthorizedException``).
    """

    def __init__(self, provider_code: str, message: str):
        super().__init__(message, provider_message=message)
        self.provider_code = provider_code


QUOTA_GUIDANCE = (
    "The sign-up service has reached its daily email quota. "
    "Please try again tomorrow or contact course staff."
)
ATTEMPT_LIMIT_GUIDANCE = (
    "Too many attempts for this account. Please wait a few minutes before trying again."
)

_QUOTA_MARKERS = ("exceeded daily email limit", "quota")
_ATTEMPT_MARKERS = ("attempt limit exceeded",)


def remap_provider_error(exc: ProviderError) -> PortalError:
    """Translate quota/attempt-limit provider errors into guidance errors.

    Any other provider error is returned unchanged so its message passes
    through verbatim.
    """
    text = (exc.message or "").lower()
    if any(marker in text for marker in _ATTEMPT_MARKERS):
        return ProviderAttemptLimitExceeded(ATTEMPT_LIMIT_GUIDANCE, provider_message=exc.message)
    if any(marker in text for marker in _QUOTA_MARKERS):
        return ProviderQuotaExceeded(QUOTA_GUIDANCE, provider_message=exc.message)
    return exc


__all__ = [
    "PortalError",
    "InvalidCredentials",
    "InvalidDomain",
    "NotAuthenticated",
    "NoUploadTarget",
    "TransferFailed",
    "FeedbackRequired",
    "AccessDenied",
    "ProviderQuotaExceeded",
    "ProviderAttemptLimitExceeded",
    "ProviderError",
    "remap_provider_error",
    "QUOTA_GUIDANCE",
    "ATTEMPT_LIMIT_GUIDANCE",
]
