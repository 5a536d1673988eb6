"""
Video evidence upload pipeline and the self-checkoff variant.

Why:
    Students prove completion of a lab part with a video. Bytes never pass
    through the backend: the backend hands out a presigned object-store URL,
    the client PUTs the file there and then registers the submission.

Behavior:
    1. `select(file)` validates MIME (`video/*`) and size locally; a rejected
       file puts the progress into `error` without any network call.
    2. `upload(notes)` runs, strictly in order:
         acquire target  POST /part-submissions/presigned-url -> {uploadUrl, fileKey}
         transfer        PUT <uploadUrl> (only HTTP 200 counts as success)
         register        POST /part-submissions -> {submissionId}
       The completion callback fires after register only.
    3. Any failure leaves `progress.status == "error"` with a readable message
       and the typed error on `failure`. There is no automatic retry: the
       transfer is at-most-once.

Cancellation:
    Each upload runs inside an `anyio.CancelScope`. `reset()` (or selecting a
    new file) cancels it, which aborts an in-flight transfer at the transport
    level; an attempt counter makes any late result of that attempt ignored.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Dict, Optional
import io
import logging
import mimetypes

import anyio
import httpx

from labportal.api import BackendApi, describe_failure
from labportal.errors import NoUploadTarget, PortalError, TransferFailed
from labportal.identity_access.session import SessionManager
from labportal.storage.upload_policy import VideoUploadPolicy, default_policy

logger = logging.getLogger("labportal.learning")

CHUNK_SIZE = 1024 * 1024


class UploadStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class UploadProgress:
    file_name: str = ""
    progress: int = 0
    status: UploadStatus = UploadStatus.IDLE
    error: Optional[str] = None


@dataclass(frozen=True)
class VideoFile:
    """A file handed to the uploader; `opener` returns a fresh binary stream."""

    name: str
    content_type: str
    size: int
    opener: Callable[[], BinaryIO]

    @classmethod
    def from_path(cls, path: str | Path, *, content_type: str | None = None) -> "VideoFile":
        p = Path(path)
        ctype = content_type or mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        return cls(name=p.name, content_type=ctype, size=p.stat().st_size, opener=lambda: p.open("rb"))

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: str) -> "VideoFile":
        return cls(name=name, content_type=content_type, size=len(data), opener=lambda: io.BytesIO(data))


@dataclass(frozen=True)
class UploadResult:
    submission_id: str
    file_key: str


def _network_reason(exc: httpx.HTTPError) -> str:
    return f"network error ({type(exc).__name__})"


def _json_body(resp: httpx.Response) -> Dict[str, object]:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class VideoPartUploader:
    """Upload one video for one lab part; one active upload per instance."""

    def __init__(
        self,
        api: BackendApi,
        session: SessionManager,
        lab_id: str,
        part_id: str,
        *,
        on_complete: Callable[[str, str], None] | None = None,
        on_progress: Callable[[UploadProgress], None] | None = None,
        policy: VideoUploadPolicy | None = None,
    ) -> None:
        self._api = api
        self._session = session
        self.lab_id = lab_id
        self.part_id = part_id
        self._on_complete = on_complete
        self._on_progress = on_progress
        self._policy = policy or default_policy()
        self._file: Optional[VideoFile] = None
        self._attempt = 0
        self._scope: Optional[anyio.CancelScope] = None
        self.progress = UploadProgress()
        self.failure: Optional[PortalError] = None

    @property
    def file(self) -> Optional[VideoFile]:
        return self._file

    def _set_progress(self, progress: UploadProgress) -> None:
        self.progress = progress
        if self._on_progress is not None:
            self._on_progress(progress)

    def _abandon_attempt(self) -> None:
        self._attempt += 1
        if self._scope is not None:
            self._scope.cancel()
            self._scope = None

    def select(self, file: VideoFile) -> bool:
        """Validate and remember `file`; returns False when it was rejected."""
        self._abandon_attempt()
        self.failure = None
        reason = self._policy.violation(content_type=file.content_type, size=file.size)
        if reason:
            self._file = None
            self._set_progress(UploadProgress(file_name=file.name, status=UploadStatus.ERROR, error=reason))
            return False
        self._file = file
        self._set_progress(UploadProgress(file_name=file.name))
        return True

    def reset(self) -> None:
        """Abort any in-flight upload and forget the selected file."""
        self._abandon_attempt()
        self._file = None
        self.failure = None
        self._set_progress(UploadProgress())

    async def upload(self, notes: str = "") -> Optional[UploadResult]:
        """Run acquire/transfer/register for the selected file.

        Returns None when nothing is selected, when the upload failed (see
        `progress.error` / `failure`) or when it was reset mid-flight.
        """
        file = self._file
        if file is None:
            return None
        if self.progress.status == UploadStatus.UPLOADING:
            raise PortalError("An upload is already in progress")
        attempt = self._attempt
        self.failure = None
        self._set_progress(UploadProgress(file_name=file.name, status=UploadStatus.UPLOADING))

        result: Optional[UploadResult] = None
        with anyio.CancelScope() as scope:
            self._scope = scope
            try:
                result = await self._run(file, notes, attempt)
            except PortalError as exc:
                if attempt == self._attempt:
                    self.failure = exc
                    self._set_progress(replace(self.progress, status=UploadStatus.ERROR, error=exc.message))
                    logger.warning(
                        "upload failed lab=%s part=%s code=%s", self.lab_id, self.part_id, exc.code
                    )
                return None
            finally:
                if self._scope is scope:
                    self._scope = None

        if scope.cancelled_caught or attempt != self._attempt or result is None:
            logger.info("upload reset in flight lab=%s part=%s", self.lab_id, self.part_id)
            return None

        self._file = None
        self._set_progress(UploadProgress(file_name=file.name, progress=100, status=UploadStatus.SUCCESS))
        if self._on_complete is not None:
            self._on_complete(result.submission_id, result.file_key)
        return result

    async def _run(self, file: VideoFile, notes: str, attempt: int) -> UploadResult:
        token = self._session.bearer_token()

        try:
            resp = await self._api.request(
                "POST",
                "/part-submissions/presigned-url",
                token=token,
                json={
                    "fileName": file.name,
                    "fileType": file.content_type,
                    "labId": self.lab_id,
                    "partId": self.part_id,
                },
            )
        except httpx.HTTPError as exc:
            raise NoUploadTarget(f"Failed to get upload URL: {_network_reason(exc)}") from exc
        if not resp.is_success:
            raise NoUploadTarget(describe_failure("Failed to get upload URL", resp))
        target = _json_body(resp)
        upload_url = target.get("uploadUrl")
        file_key = target.get("fileKey")
        if not upload_url or not file_key:
            raise NoUploadTarget("Failed to get upload URL: response is missing uploadUrl or fileKey")

        await self._transfer(file, str(upload_url), attempt)

        try:
            resp = await self._api.request(
                "POST",
                "/part-submissions",
                token=token,
                json={"labId": self.lab_id, "partId": self.part_id, "fileKey": file_key, "notes": notes},
            )
        except httpx.HTTPError as exc:
            raise PortalError(f"Failed to create submission record: {_network_reason(exc)}") from exc
        if not resp.is_success:
            raise PortalError(describe_failure("Failed to create submission record", resp))
        submission_id = _json_body(resp).get("submissionId")
        if not submission_id:
            raise PortalError("Failed to create submission record: response is missing submissionId")
        return UploadResult(submission_id=str(submission_id), file_key=str(file_key))

    async def _transfer(self, file: VideoFile, url: str, attempt: int) -> None:
        # Presigned URL carries its own authorization; no bearer token here.
        headers = {"Content-Type": file.content_type, "Content-Length": str(file.size)}
        try:
            resp = await self._api.client.put(url, content=self._stream(file, attempt), headers=headers)
        except (httpx.HTTPError, OSError) as exc:
            raise TransferFailed("Upload failed") from exc
        if resp.status_code != 200:
            logger.warning("object store rejected upload status=%s", resp.status_code)
            raise TransferFailed("Upload failed")

    async def _stream(self, file: VideoFile, attempt: int) -> AsyncIterator[bytes]:
        sent = 0
        with file.opener() as fh:
            while True:
                chunk = fh.read(CHUNK_SIZE)
                if not chunk:
                    break
                sent += len(chunk)
                if attempt == self._attempt and file.size:
                    pct = min(100, round(sent * 100 / file.size))
                    if pct != self.progress.progress:
                        self._set_progress(replace(self.progress, progress=pct))
                yield chunk


class SelfCheckoff:
    """Create a submission without video evidence (`selfCheckoff: true`, no file key)."""

    def __init__(
        self,
        api: BackendApi,
        session: SessionManager,
        lab_id: str,
        part_id: str,
        *,
        on_complete: Callable[[str], None] | None = None,
    ) -> None:
        self._api = api
        self._session = session
        self.lab_id = lab_id
        self.part_id = part_id
        self._on_complete = on_complete
        self.submitting = False
        self.error: Optional[str] = None

    async def submit(self, notes: str = "") -> str:
        self.submitting = True
        self.error = None
        try:
            token = self._session.bearer_token()
            try:
                resp = await self._api.request(
                    "POST",
                    "/part-submissions",
                    token=token,
                    json={"labId": self.lab_id, "partId": self.part_id, "notes": notes, "selfCheckoff": True},
                )
            except httpx.HTTPError as exc:
                raise PortalError(f"Failed to submit self-checkoff: {_network_reason(exc)}") from exc
            if not resp.is_success:
                raise PortalError(describe_failure("Failed to submit self-checkoff", resp))
            submission_id = str(_json_body(resp).get("submissionId") or "")
        except PortalError as exc:
            self.error = exc.message
            raise
        finally:
            self.submitting = False
        if self._on_complete is not None:
            self._on_complete(submission_id)
        return submission_id


__all__ = [
    "CHUNK_SIZE",
    "UploadStatus",
    "UploadProgress",
    "VideoFile",
    "UploadResult",
    "VideoPartUploader",
    "SelfCheckoff",
]
