"""
Backend API payloads as Pydantic models.

Why:
    The backend speaks camelCase JSON; Python code uses snake_case. Models
    accept both (`populate_by_name`) and ignore unknown fields so additive
    backend changes do not break the client.

Open decisions:
    - `Lab.locked` is the single source of truth for lock state; `status` is
      derived from it and any `status` sent by the backend is ignored.
    - A submission without `fileKey` is a self-checkoff (`is_self_checkoff`),
      whatever the `selfCheckoff` flag says.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic.functional_validators import field_validator


FIRST_LAB_ID = "lab1"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


def _as_utc(v: Optional[datetime]) -> Optional[datetime]:
    # Backend timestamps are UTC; naive values would not compare with aware ones.
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class PartSubmission(_ApiModel):
    submission_id: str
    lab_id: str
    part_id: str
    student_id: str = ""
    username: str = ""
    full_name: Optional[str] = None
    file_key: Optional[str] = None
    video_url: Optional[str] = None
    notes: str = ""
    status: SubmissionStatus = SubmissionStatus.PENDING
    feedback: Optional[str] = None
    submitted_at: datetime
    updated_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    self_checkoff: bool = False

    @field_validator("submitted_at", "updated_at", "reviewed_at")
    @classmethod
    def _normalize_tz(cls, v):
        return _as_utc(v)

    @field_validator("notes", mode="before")
    @classmethod
    def _none_notes(cls, v):
        return "" if v is None else v

    @property
    def is_self_checkoff(self) -> bool:
        return self.self_checkoff or not self.file_key


class Lab(_ApiModel):
    lab_id: str
    title: str
    description: str = ""
    content: str = ""
    structured_content: Optional[Dict[str, Any]] = None
    order: int = 0
    locked: bool = Field(default=None, validate_default=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("locked", mode="before")
    @classmethod
    def _default_locked(cls, v, info):
        # Labs without an explicit flag stay locked, except the first lab.
        if v is None:
            return info.data.get("lab_id") != FIRST_LAB_ID
        return v

    @property
    def status(self) -> str:
        return "locked" if self.locked else "unlocked"


class Student(_ApiModel):
    name: str
    section: str = ""
    has_account: bool = False
    progress_summary: Optional[Dict[str, Any]] = None


class SubmissionQueue(_ApiModel):
    items: List[PartSubmission] = Field(default_factory=list)
    total_count: int = 0
    pending_count: int = 0


__all__ = ["SubmissionStatus", "PartSubmission", "Lab", "Student", "SubmissionQueue"]
