"""
Review queue for staff: fetch, filter/sort and decide part submissions.

Why:
    Staff work through pending video checkoffs one at a time. The controller
    holds the fetched queue, a "current" pointer and the counters shown next
    to the queue.

Behavior:
    - `fetch()` prefers `GET /part-submissions/queue`. A 404 silently falls
      back to `GET /part-submissions`; any other failure falls back with a
      warning. Both paths run the same `apply_queue_filters`, so ordering is
      identical for the same filters.
    - The head item is re-fetched individually (fresh, time-limited media
      URL); on failure the stale record is shown.
    - `approve`/`reject` PUT the decision, then update the local queue without
      re-fetching: remove the item, advance the pointer (wrap to the first),
      decrement `pending_count` (floored at 0). A failed PUT leaves the queue
      untouched and propagates. A decided submission that is not in the loaded
      queue changes neither the pointer nor the counter.

Open decision:
    Local state may drift from the server between fetches (another reviewer
    deciding the same item). Accepted; the next `fetch()` reconciles.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
import logging

import httpx

from labportal.api import BackendApi, error_message, parse_model, parse_models
from labportal.errors import FeedbackRequired, PortalError
from labportal.identity_access.session import SessionManager
from labportal.models import PartSubmission, SubmissionQueue, SubmissionStatus

logger = logging.getLogger("labportal.teaching")

SORT_FIELDS = {"submittedAt": "submitted_at", "updatedAt": "updated_at"}
SORT_DIRECTIONS = frozenset({"asc", "desc"})
STATUS_ALL = "all"

DEFAULT_APPROVAL_FEEDBACK = "Great job!"
REJECTION_FEEDBACK_MESSAGE = "Please provide feedback explaining why the submission was rejected"


@dataclass(frozen=True)
class QueueFilters:
    status: Optional[str] = SubmissionStatus.PENDING.value
    lab_id: Optional[str] = None
    part_id: Optional[str] = None
    student_id: Optional[str] = None
    sort_by: str = "submittedAt"
    sort_direction: str = "asc"

    def __post_init__(self) -> None:
        if self.sort_by not in SORT_FIELDS:
            raise ValueError(f"sort_by must be one of {sorted(SORT_FIELDS)}")
        if self.sort_direction not in SORT_DIRECTIONS:
            raise ValueError("sort_direction must be 'asc' or 'desc'")

    def to_params(self) -> Dict[str, Optional[str]]:
        return {
            "status": self.status,
            "labId": self.lab_id,
            "partId": self.part_id,
            "studentId": self.student_id,
            "sortBy": self.sort_by,
            "sortDirection": self.sort_direction,
        }


def apply_queue_filters(items: Iterable[PartSubmission], filters: QueueFilters) -> List[PartSubmission]:
    """Filter and sort submissions; ties on the timestamp break on submission id."""
    out = [
        s
        for s in items
        if (not filters.status or filters.status == STATUS_ALL or s.status.value == filters.status)
        and (not filters.lab_id or s.lab_id == filters.lab_id)
        and (not filters.part_id or s.part_id == filters.part_id)
        and (not filters.student_id or s.student_id == filters.student_id)
    ]
    attr = SORT_FIELDS[filters.sort_by]

    def _key(s: PartSubmission):
        return (getattr(s, attr) or s.submitted_at, s.submission_id)

    return sorted(out, key=_key, reverse=filters.sort_direction == "desc")


def display_name(submission: PartSubmission) -> str:
    return submission.full_name or submission.username


def name_status_indicator(submission: PartSubmission) -> str:
    return "" if submission.full_name else " (full name not found)"


_Fetched = Tuple[List[PartSubmission], int, int]


@dataclass
class ReviewQueueController:
    api: BackendApi
    session: SessionManager
    filters: QueueFilters = field(default_factory=QueueFilters)
    items: List[PartSubmission] = field(default_factory=list)
    current: Optional[PartSubmission] = None
    total_count: int = 0
    pending_count: int = 0
    used_fallback: bool = False

    async def fetch(self, filters: QueueFilters | None = None) -> List[PartSubmission]:
        if filters is not None:
            self.filters = filters
        token = self.session.bearer_token()
        try:
            fetched = await self._fetch_queue(token)
        except (PortalError, httpx.HTTPError) as exc:
            logger.warning("queue endpoint failed (%s); falling back to all submissions", type(exc).__name__)
            fetched = None
        self.used_fallback = fetched is None
        if fetched is None:
            fetched = await self._fetch_all(token)
        self.items, self.total_count, self.pending_count = fetched
        self.current = await self._refreshed(self.items[0]) if self.items else None
        return list(self.items)

    async def _fetch_queue(self, token: str) -> Optional[_Fetched]:
        resp = await self.api.request(
            "GET", "/part-submissions/queue", token=token, params=self.filters.to_params()
        )
        if resp.status_code == 404:
            logger.debug("queue endpoint not available; using client-side filtering")
            return None
        if not resp.is_success:
            raise PortalError("Failed to fetch submission queue")
        data = parse_model(SubmissionQueue, resp)
        return apply_queue_filters(data.items, self.filters), data.total_count, data.pending_count

    async def _fetch_all(self, token: str) -> _Fetched:
        status = self.filters.status if self.filters.status != STATUS_ALL else None
        resp = await self.api.request(
            "GET",
            "/part-submissions",
            token=token,
            params={
                "status": status,
                "sortBy": self.filters.sort_by,
                "sortDirection": self.filters.sort_direction,
            },
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch submissions"))
        data = parse_models(PartSubmission, resp)
        pending = sum(1 for s in data if s.status == SubmissionStatus.PENDING)
        return apply_queue_filters(data, self.filters), len(data), pending

    async def _refreshed(self, submission: PartSubmission) -> PartSubmission:
        try:
            return await self.load(submission.submission_id)
        except (PortalError, httpx.HTTPError) as exc:
            logger.warning("could not refresh submission=%s (%s); showing cached record", submission.submission_id, type(exc).__name__)
            return submission

    async def load(self, submission_id: str) -> PartSubmission:
        """Fetch one submission by id; failures propagate."""
        resp = await self.api.request(
            "GET", f"/part-submissions/{submission_id}", token=self.session.bearer_token()
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, "Failed to fetch submission"))
        return parse_model(PartSubmission, resp)

    async def select(self, submission: PartSubmission) -> PartSubmission:
        """Make `submission` current, refreshed for a fresh media URL."""
        self.current = await self._refreshed(submission)
        return self.current

    def _target(self, submission: Optional[PartSubmission]) -> PartSubmission:
        target = submission or self.current
        if target is None:
            raise PortalError("No submission selected")
        return target

    async def approve(self, submission: PartSubmission | None = None, feedback: str = "") -> None:
        target = self._target(submission)
        await self._decide(target, SubmissionStatus.APPROVED, (feedback or "").strip() or DEFAULT_APPROVAL_FEEDBACK)

    async def reject(self, submission: PartSubmission | None = None, feedback: str = "") -> None:
        if not (feedback or "").strip():
            raise FeedbackRequired(REJECTION_FEEDBACK_MESSAGE)
        target = self._target(submission)
        await self._decide(target, SubmissionStatus.REJECTED, feedback)

    async def _decide(self, target: PartSubmission, status: SubmissionStatus, feedback: str) -> None:
        verb = "approve" if status == SubmissionStatus.APPROVED else "reject"
        resp = await self.api.request(
            "PUT",
            f"/part-submissions/{target.submission_id}",
            token=self.session.bearer_token(),
            json={"status": status.value, "feedback": feedback},
        )
        if not resp.is_success:
            raise PortalError(error_message(resp, f"Failed to {verb} submission"))
        logger.info("submission=%s %s", target.submission_id, status.value)
        self._remove(target)

    def _remove(self, target: PartSubmission) -> None:
        old = self.items
        idx = next((i for i, s in enumerate(old) if s.submission_id == target.submission_id), None)
        if idx is None:
            # Decided outside the loaded queue; only drop a stale pointer to it.
            if self.current is not None and self.current.submission_id == target.submission_id:
                self.current = old[0] if old else None
            return
        self.items = old[:idx] + old[idx + 1 :]
        if len(old) > 1:
            nxt = idx + 1
            self.current = old[nxt] if nxt < len(old) else old[0]
        else:
            self.current = None
        self.pending_count = max(0, self.pending_count - 1)


__all__ = [
    "DEFAULT_APPROVAL_FEEDBACK",
    "REJECTION_FEEDBACK_MESSAGE",
    "QueueFilters",
    "apply_queue_filters",
    "display_name",
    "name_status_indicator",
    "ReviewQueueController",
]
