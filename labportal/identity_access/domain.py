"""
Identity domain constants and simple helpers.

Why:
- Centralize roles and provider attribute names to avoid drift between the
  session manager, the CLI and the tests.
- Keep the attribute parsing pure so it can be tested without a provider.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional

# Keep roles minimal and explicit. Immutable to prevent accidental mutation.
ALLOWED_ROLES = frozenset({"student", "staff"})
DEFAULT_ROLE = "student"

ATTR_ROLE = "custom:role"
ATTR_STUDENT_ID = "custom:studentId"
ATTR_FULL_NAME = "custom:fullName"
ATTR_EMAIL = "email"
ATTR_PREFERRED_USERNAME = "preferred_username"


@dataclass(frozen=True)
class AuthenticatedUser:
    username: str
    role: str
    student_id: Optional[str] = None
    full_name: Optional[str] = None

    @property
    def is_staff(self) -> bool:
        return self.role == "staff"

    def with_full_name(self, full_name: str) -> "AuthenticatedUser":
        return replace(self, full_name=full_name)


def _attribute_map(attributes: Iterable[Mapping[str, str]]) -> dict[str, str]:
    out: dict[str, str] = {}
    for attr in attributes or ():
        name = attr.get("Name")
        if name and name not in out:
            out[name] = attr.get("Value") or ""
    return out


def parse_user_attributes(attributes: Iterable[Mapping[str, str]]) -> AuthenticatedUser:
    """Build an `AuthenticatedUser` from provider attribute pairs.

    Behavior:
        - Role falls back to "student" when absent or unknown.
        - Username prefers `preferred_username`, then `email`.
        - Empty optional attributes are treated as unset.
    """
    attrs = _attribute_map(attributes)
    role = attrs.get(ATTR_ROLE) or DEFAULT_ROLE
    if role not in ALLOWED_ROLES:
        role = DEFAULT_ROLE
    username = attrs.get(ATTR_PREFERRED_USERNAME) or attrs.get(ATTR_EMAIL) or ""
    return AuthenticatedUser(
        username=username,
        role=role,
        student_id=attrs.get(ATTR_STUDENT_ID) or None,
        full_name=attrs.get(ATTR_FULL_NAME) or None,
    )


def email_has_suffix(email: str, suffix: str) -> bool:
    """Case-insensitive, whitespace-tolerant suffix check for sign-up emails."""
    e = (email or "").strip().lower()
    s = (suffix or "").strip().lower()
    return bool(s) and e.endswith(s) and len(e) > len(s)


__all__ = [
    "ALLOWED_ROLES",
    "DEFAULT_ROLE",
    "ATTR_ROLE",
    "ATTR_STUDENT_ID",
    "ATTR_FULL_NAME",
    "AuthenticatedUser",
    "parse_user_attributes",
    "email_has_suffix",
]
