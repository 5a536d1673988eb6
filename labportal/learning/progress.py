"""
Own progress for the signed-in student.

The backend keys progress documents by roster identifier, which may be the
student id from the identity provider or the username (usually the email).
Identifiers are tried in that order; the first 2xx response wins.
"""
from __future__ import annotations

from typing import Any, Dict, List
from urllib.parse import quote

from labportal.api import BackendApi, json_object
from labportal.errors import NotAuthenticated, PortalError
from labportal.identity_access.session import SessionManager


def _candidates(session: SessionManager) -> List[str]:
    user = session.state.user
    if user is None:
        raise NotAuthenticated("No authenticated user")
    out: List[str] = []
    for ident in (user.student_id, user.username):
        if ident and ident not in out:
            out.append(ident)
    return out


async def my_progress(api: BackendApi, session: SessionManager) -> Dict[str, Any]:
    token = session.bearer_token()
    for ident in _candidates(session):
        resp = await api.request("GET", f"/progress/{quote(ident, safe='')}", token=token)
        if resp.is_success:
            return json_object(resp)
    raise PortalError("Failed to fetch progress data")


__all__ = ["my_progress"]
