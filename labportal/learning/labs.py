"""
Lab catalog for students (and staff viewing as students).

Access rules:
    - `Lab.locked` is the only lock flag consulted. Staff see locked labs;
      everyone whose effective role is student does not.
    - A 403 from `GET /labs/{id}`, or a locked lab fetched by a student,
      raises `AccessDenied` and leaves a one-shot `labAccessError` message for
      the lab list to show after the redirect.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional
import logging

from labportal.api import BackendApi, error_message, parse_model, parse_models
from labportal.errors import AccessDenied, PortalError
from labportal.identity_access.session import AuthState, SessionManager
from labportal.identity_access.stores import MessageStore
from labportal.models import Lab, PartSubmission

logger = logging.getLogger("labportal.learning")

LAB_ACCESS_ERROR_KEY = "labAccessError"
LOCKED_LAB_MESSAGE = "This lab is currently locked. Please wait for your instructor to unlock it."


def is_locked_for(lab: Lab, state: AuthState) -> bool:
    """True when `lab` is locked and the viewer is effectively a student."""
    return lab.locked and state.effective_role != "staff"


def latest_by_part(submissions: Iterable[PartSubmission]) -> Dict[str, PartSubmission]:
    """Keep the most recently submitted record per part."""
    out: Dict[str, PartSubmission] = {}
    for sub in submissions:
        prev = out.get(sub.part_id)
        if prev is None or sub.submitted_at >= prev.submitted_at:
            out[sub.part_id] = sub
    return out


class LabCatalog:
    def __init__(self, api: BackendApi, session: SessionManager, messages: MessageStore | None = None):
        self._api = api
        self._session = session
        self.messages = messages or MessageStore()

    async def list_labs(self) -> List[Lab]:
        resp = await self._api.request("GET", "/labs", token=self._session.bearer_token())
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch labs"))
        labs = parse_models(Lab, resp)
        return sorted(labs, key=lambda lab: lab.order)

    async def get_lab(self, lab_id: str) -> Lab:
        resp = await self._api.request("GET", f"/labs/{lab_id}", token=self._session.bearer_token())
        if resp.status_code == 403:
            self._deny(error_message(resp, LOCKED_LAB_MESSAGE, field="message"))
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch lab"))
        lab = parse_model(Lab, resp)
        if is_locked_for(lab, self._session.state):
            logger.info("student attempted to open locked lab=%s", lab_id)
            self._deny(LOCKED_LAB_MESSAGE)
        return lab

    def _deny(self, message: str) -> None:
        self.messages.put(LAB_ACCESS_ERROR_KEY, message)
        raise AccessDenied(message)

    def pop_lab_access_error(self) -> Optional[str]:
        return self.messages.pop(LAB_ACCESS_ERROR_KEY)

    async def part_submissions(self, lab_id: str) -> Dict[str, PartSubmission]:
        """Latest submission per part of `lab_id` for the signed-in student."""
        resp = await self._api.request(
            "GET", "/part-submissions", token=self._session.bearer_token(), params={"labId": lab_id}
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch part submissions"))
        return latest_by_part(parse_models(PartSubmission, resp))


__all__ = [
    "LAB_ACCESS_ERROR_KEY",
    "LOCKED_LAB_MESSAGE",
    "is_locked_for",
    "latest_by_part",
    "LabCatalog",
]
