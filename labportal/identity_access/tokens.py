"""
JWT inspection helpers for the identity_access bounded context.

Why: The session manager can skip a provider round trip when the cached
access token has visibly expired. Signature validation stays with the
provider (GetUser); here we only read claims, never trust them for
authorization.
"""
from __future__ import annotations

from typing import Dict, Optional

from jose import jwt
from jose.exceptions import JOSEError

MAX_CLOCK_SKEW_SECONDS = 5  # Allow minimal skew between client and provider


def unverified_claims(token: str) -> Optional[Dict[str, object]]:
    """Return the token's claims without verifying the signature.

    Returns None for anything that is not a decodable JWT.
    """
    if not token:
        return None
    try:
        claims = jwt.get_unverified_claims(token)
    except JOSEError:
        return None
    return claims if isinstance(claims, dict) else None


def token_expired(token: str, *, now: float) -> bool:
    """True only when the token carries an `exp` claim that lies in the past.

    Undecodable tokens or tokens without `exp` report False so the caller
    falls back to remote validation.
    """
    claims = unverified_claims(token)
    if not claims:
        return False
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return False
    return exp + MAX_CLOCK_SKEW_SECONDS < now


__all__ = ["unverified_claims", "token_expired", "MAX_CLOCK_SKEW_SECONDS"]
