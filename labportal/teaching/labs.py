"""
Lab administration for staff.

Locking is class-wide: `POST /labs/{id}/lock|unlock` flips the single
`locked` flag every student sees. Content edits replace the lab document via
`PUT /labs/{id}`.
"""
from __future__ import annotations

from typing import Any, Mapping
import logging

from labportal.api import BackendApi, error_message
from labportal.errors import PortalError
from labportal.identity_access.session import SessionManager
from labportal.models import Lab

logger = logging.getLogger("labportal.teaching")


class LabAdmin:
    def __init__(self, api: BackendApi, session: SessionManager):
        self._api = api
        self._session = session

    async def _toggle(self, lab_id: str, action: str) -> None:
        resp = await self._api.request("POST", f"/labs/{lab_id}/{action}", token=self._session.bearer_token())
        if not resp.is_success:
            raise PortalError(error_message(resp, f"Failed to {action} lab"))
        logger.info("lab=%s %sed", lab_id, action)

    async def lock(self, lab_id: str) -> None:
        await self._toggle(lab_id, "lock")

    async def unlock(self, lab_id: str) -> None:
        await self._toggle(lab_id, "unlock")

    async def update_content(self, lab_id: str, payload: Lab | Mapping[str, Any]) -> None:
        """Replace the lab's content; `payload` is a `Lab` or its camelCase JSON."""
        body = payload.to_api() if isinstance(payload, Lab) else dict(payload)
        resp = await self._api.request(
            "PUT",
            f"/labs/{lab_id}",
            token=self._session.bearer_token(),
            json=body,
            headers={"Accept": "application/json"},
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to update lab content"))


__all__ = ["LabAdmin"]
