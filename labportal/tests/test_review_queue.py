"""
Review queue: server path vs. client fallback, decisions and pointer advance.

Scope:
    - Same ordering from the queue endpoint and the fallback for the same filters
    - 404 falls back silently; other failures fall back too
    - Head item refreshed individually, stale record on failure
    - Reject requires feedback (no PUT), approve defaults feedback
    - Local removal, advance/wrap and pending counter after decisions
"""
from __future__ import annotations

import httpx
import pytest

from labportal.errors import FeedbackRequired, PortalError
from labportal.models import PartSubmission
from labportal.teaching.review_queue import (
    DEFAULT_APPROVAL_FEEDBACK,
    QueueFilters,
    ReviewQueueController,
    apply_queue_filters,
    display_name,
    name_status_indicator,
)

pytestmark = pytest.mark.anyio("asyncio")

QUEUE = "/part-submissions/queue"
ALL = "/part-submissions"

T1 = "2024-09-02T10:00:00Z"
T2 = "2024-09-03T10:00:00Z"
T3 = "2024-09-04T10:00:00Z"


def _sub(sid: str, submitted_at: str, *, status: str = "pending", lab: str = "lab2", part: str = "part1", **extra) -> dict:
    body = {
        "submissionId": sid,
        "labId": lab,
        "partId": part,
        "studentId": f"student-{sid}",
        "username": f"{sid}@gatech.edu",
        "fileKey": f"{lab}/{part}/{sid}.mp4",
        "videoUrl": f"https://bucket.test/{sid}.mp4?sig=old",
        "notes": "",
        "status": status,
        "submittedAt": submitted_at,
        "updatedAt": submitted_at,
    }
    body.update(extra)
    return body


UNORDERED = [_sub("s1", T1), _sub("s3", T3), _sub("s2", T2)]


def _ids(items):
    return [s.submission_id for s in items]


def _serve_queue(backend, items, *, total=None, pending=None):
    backend.on(
        "GET",
        QUEUE,
        json_body={
            "items": items,
            "totalCount": len(items) if total is None else total,
            "pendingCount": len(items) if pending is None else pending,
        },
    )


def _serve_each(backend, items, *, url_suffix="new"):
    for item in items:
        fresh = dict(item, videoUrl=f"https://bucket.test/{item['submissionId']}.mp4?sig={url_suffix}")
        backend.on("GET", f"{ALL}/{item['submissionId']}", json_body=fresh)


async def _loaded(api, session, backend, items=UNORDERED):
    _serve_queue(backend, items)
    _serve_each(backend, items)
    ctl = ReviewQueueController(api, session)
    await ctl.fetch()
    return ctl


@pytest.mark.parametrize("path", ["server", "fallback"])
async def test_both_paths_order_by_submitted_at_ascending(api, session, backend, path):
    if path == "server":
        _serve_queue(backend, UNORDERED)
    else:
        backend.on("GET", ALL, json_body=UNORDERED)
    ctl = ReviewQueueController(api, session)

    items = await ctl.fetch(QueueFilters(sort_by="submittedAt", sort_direction="asc"))

    assert _ids(items) == ["s1", "s2", "s3"]
    assert ctl.used_fallback is (path == "fallback")


async def test_queue_404_falls_back_with_client_side_filters(api, session, backend):
    data = [
        _sub("s1", T1),
        _sub("s2", T2, status="approved"),
        _sub("s3", T3, lab="lab3"),
        _sub("s4", T2),
    ]
    backend.on("GET", ALL, json_body=data)
    ctl = ReviewQueueController(api, session)

    items = await ctl.fetch(QueueFilters(status="pending", lab_id="lab2", sort_direction="desc"))

    assert _ids(items) == ["s4", "s1"]
    assert ctl.total_count == 4
    assert ctl.pending_count == 3
    (req,) = backend.calls("GET", ALL)
    assert req.url.params["status"] == "pending"
    assert req.url.params["sortDirection"] == "desc"
    assert "labId" not in req.url.params


async def test_queue_server_error_also_falls_back(api, session, backend):
    backend.on("GET", QUEUE, 500, json_body={"error": "boom"})
    backend.on("GET", ALL, json_body=UNORDERED)
    ctl = ReviewQueueController(api, session)

    await ctl.fetch()

    assert ctl.used_fallback is True
    assert _ids(ctl.items) == ["s1", "s2", "s3"]


async def test_queue_endpoint_receives_filters(api, session, backend):
    _serve_queue(backend, [])
    ctl = ReviewQueueController(api, session)

    await ctl.fetch(QueueFilters(status="all", lab_id="lab2", part_id="part1", sort_by="updatedAt"))

    (req,) = backend.calls("GET", QUEUE)
    assert dict(req.url.params) == {
        "status": "all",
        "labId": "lab2",
        "partId": "part1",
        "sortBy": "updatedAt",
        "sortDirection": "asc",
    }
    assert ctl.current is None


async def test_fallback_failure_propagates(api, session, backend):
    backend.on("GET", ALL, 500, json_body={"error": "Failed to fetch submissions"})
    ctl = ReviewQueueController(api, session)

    with pytest.raises(PortalError, match="Failed to fetch submissions"):
        await ctl.fetch()


async def test_head_item_is_refreshed_for_fresh_media_url(api, session, backend):
    ctl = await _loaded(api, session, backend)

    assert ctl.current.submission_id == "s1"
    assert ctl.current.video_url.endswith("sig=new")
    assert ctl.total_count == 3


async def test_head_refresh_failure_shows_stale_record(api, session, backend):
    _serve_queue(backend, UNORDERED)
    backend.on("GET", f"{ALL}/s1", 500, text="oops")
    ctl = ReviewQueueController(api, session)

    await ctl.fetch()

    assert ctl.current.submission_id == "s1"
    assert ctl.current.video_url.endswith("sig=old")


async def test_reject_without_feedback_sends_nothing(api, session, backend):
    ctl = await _loaded(api, session, backend)
    before = list(ctl.items)

    with pytest.raises(FeedbackRequired):
        await ctl.reject(feedback="   ")

    assert [r for r in backend.requests if r.method == "PUT"] == []
    assert ctl.items == before


async def test_reject_with_feedback_puts_once_and_removes_item(api, session, backend):
    ctl = await _loaded(api, session, backend)
    backend.on("PUT", f"{ALL}/s1", json_body={"message": "updated"})
    pending_before = ctl.pending_count

    await ctl.reject(feedback="needs better lighting")

    puts = [r for r in backend.requests if r.method == "PUT"]
    assert len(puts) == 1
    assert backend.body(puts[0]) == {"status": "rejected", "feedback": "needs better lighting"}
    assert "s1" not in _ids(ctl.items)
    assert ctl.pending_count == pending_before - 1


async def test_approve_defaults_feedback(api, session, backend):
    ctl = await _loaded(api, session, backend)
    backend.on("PUT", f"{ALL}/s1", json_body={})

    await ctl.approve()

    (put,) = [r for r in backend.requests if r.method == "PUT"]
    assert backend.body(put) == {"status": "approved", "feedback": DEFAULT_APPROVAL_FEEDBACK}


async def test_approve_advances_to_next_item(api, session, backend):
    ctl = await _loaded(api, session, backend)
    original = list(ctl.items)
    backend.on("PUT", f"{ALL}/s2", json_body={})
    await ctl.select(original[1])

    await ctl.approve(feedback="nice")

    assert ctl.current.submission_id == original[2].submission_id
    assert _ids(ctl.items) == ["s1", "s3"]


async def test_approving_last_item_wraps_to_first(api, session, backend):
    ctl = await _loaded(api, session, backend)
    backend.on("PUT", f"{ALL}/s3", json_body={})

    await ctl.approve(ctl.items[2])

    assert ctl.current.submission_id == "s1"


async def test_approving_only_item_clears_current(api, session, backend):
    ctl = await _loaded(api, session, backend, items=[_sub("s1", T1)])
    backend.on("PUT", f"{ALL}/s1", json_body={})

    await ctl.approve()

    assert ctl.current is None
    assert ctl.items == []
    assert ctl.pending_count == 0

    backend.on("PUT", f"{ALL}/s1", json_body={})
    await ctl.approve(PartSubmission.model_validate(_sub("s1", T1)))
    assert ctl.pending_count == 0


async def test_failed_decision_leaves_queue_untouched(api, session, backend):
    ctl = await _loaded(api, session, backend)
    backend.on("PUT", f"{ALL}/s1", 500, json_body={"error": "Failed to approve submission"})
    before = (list(ctl.items), ctl.current, ctl.pending_count)

    with pytest.raises(PortalError, match="Failed to approve submission"):
        await ctl.approve()

    assert (ctl.items, ctl.current, ctl.pending_count) == before


async def test_decision_without_selection_fails(api, session, backend):
    ctl = ReviewQueueController(api, session)

    with pytest.raises(PortalError, match="No submission selected"):
        await ctl.approve()


async def test_network_error_on_head_refresh_is_tolerated(api, session, backend):
    def _boom(request):
        raise httpx.ReadTimeout("timed out", request=request)

    _serve_queue(backend, UNORDERED)
    backend.on("GET", f"{ALL}/s1", handler=_boom)
    ctl = ReviewQueueController(api, session)

    await ctl.fetch()

    assert ctl.current.submission_id == "s1"


def test_sort_ties_break_on_submission_id():
    subs = [PartSubmission.model_validate(_sub(s, T1)) for s in ("b", "a", "c")]

    assert _ids(apply_queue_filters(subs, QueueFilters())) == ["a", "b", "c"]


def test_updated_at_sort_falls_back_to_submitted_at():
    subs = [
        PartSubmission.model_validate(_sub("s1", T1, updatedAt=T3)),
        PartSubmission.model_validate(_sub("s2", T2, updatedAt=None)),
    ]

    assert _ids(apply_queue_filters(subs, QueueFilters(sort_by="updatedAt"))) == ["s2", "s1"]


def test_invalid_sort_options_are_rejected():
    with pytest.raises(ValueError):
        QueueFilters(sort_by="title")
    with pytest.raises(ValueError):
        QueueFilters(sort_direction="up")


def test_display_name_helpers():
    named = PartSubmission.model_validate(_sub("s1", T1, fullName="George Burdell"))
    anon = PartSubmission.model_validate(_sub("s2", T1))

    assert display_name(named) == "George Burdell"
    assert name_status_indicator(named) == ""
    assert display_name(anon) == "s2@gatech.edu"
    assert name_status_indicator(anon) == " (full name not found)"


def test_missing_file_key_marks_self_checkoff():
    sub = PartSubmission.model_validate(_sub("s1", T1, fileKey=None, videoUrl=None))

    assert sub.is_self_checkoff is True


async def test_deciding_submission_outside_queue_keeps_pointer_and_count(api, session, backend):
    ctl = await _loaded(api, session, backend)
    backend.on("PUT", f"{ALL}/s9", json_body={})
    before = (_ids(ctl.items), ctl.current.submission_id, ctl.pending_count)

    await ctl.approve(PartSubmission.model_validate(_sub("s9", T2)))

    assert (_ids(ctl.items), ctl.current.submission_id, ctl.pending_count) == before
