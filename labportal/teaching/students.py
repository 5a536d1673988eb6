"""
Student roster, per-student progress and grading for staff.

Students are addressed by roster name, which is also the key of their
progress document (`/progress/{name}`).
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote
import logging

from labportal.api import BackendApi, error_message, json_object, parse_models
from labportal.errors import PortalError
from labportal.identity_access.session import SessionManager
from labportal.models import PartSubmission, Student

logger = logging.getLogger("labportal.teaching")

SECTION_ALL = "all"
CHECKOFF_IN_LAB = "in-lab"
CHECKOFF_PENDING = "pending"


def filter_students(students: Iterable[Student], search: str = "", section: Optional[str] = None) -> List[Student]:
    """Case-insensitive name search plus exact section match, sorted by name."""
    needle = (search or "").strip().lower()
    out = [
        s
        for s in students
        if needle in s.name.lower() and (not section or section == SECTION_ALL or s.section == section)
    ]
    return sorted(out, key=lambda s: s.name.lower())


def submission_key(lab_id: str, part_id: str) -> str:
    return f"{lab_id}#{part_id}"


class StudentDirectory:
    def __init__(self, api: BackendApi, session: SessionManager):
        self._api = api
        self._session = session

    async def list_students(self, search: str = "", section: Optional[str] = None) -> List[Student]:
        resp = await self._api.request("GET", "/students", token=self._session.bearer_token())
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch students"))
        return filter_students(parse_models(Student, resp), search, section)

    async def student_progress(self, name: str) -> Dict[str, Any]:
        resp = await self._api.request("GET", f"/progress/{quote(name, safe='')}", token=self._session.bearer_token())
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch student details"))
        return json_object(resp)

    async def student_submissions(self, name: str) -> Dict[str, PartSubmission]:
        """Submissions of one student keyed by `"<labId>#<partId>"`; later records win."""
        resp = await self._api.request(
            "GET", "/part-submissions", token=self._session.bearer_token(), params={"studentId": name}
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch part submissions"))
        out: Dict[str, PartSubmission] = {}
        for sub in sorted(parse_models(PartSubmission, resp), key=lambda s: s.submitted_at):
            out[submission_key(sub.lab_id, sub.part_id)] = sub
        return out

    async def _put_progress(self, name: str, body: Dict[str, Any], default_error: str) -> None:
        resp = await self._api.request(
            "PUT", f"/progress/{quote(name, safe='')}", token=self._session.bearer_token(), json=body
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, default_error))

    async def save_grade(self, name: str, lab_id: str, grade: Optional[float]) -> None:
        """Set (or clear with None) the grade of one lab."""
        await self._put_progress(name, {"labId": lab_id, "grade": grade}, "Failed to update grade")
        logger.info("grade updated lab=%s", lab_id)

    async def set_part_checkoff(self, name: str, lab_id: str, part_id: str, completed: bool) -> None:
        await self._put_progress(
            name,
            {
                "labId": lab_id,
                "partId": part_id,
                "completed": completed,
                "checkoffType": CHECKOFF_IN_LAB if completed else CHECKOFF_PENDING,
            },
            "Failed to update checkoff status",
        )


__all__ = ["filter_students", "submission_key", "StudentDirectory"]
