"""
Shared upload policy for lab part videos.

Centralises MIME/size constraints so the pipeline stays slim and both tests
and the CLI can reference a single source of truth. Validation is local only:
a rejected file never causes a network call.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from labportal.storage.config import get_video_max_upload_bytes

VIDEO_MIME_PREFIX = "video/"

SELECT_VIDEO_MESSAGE = "Please select a video file"


def _limit_label(max_bytes: int) -> str:
    mib = max_bytes / (1024 * 1024)
    return f"{mib:g}MB"


@dataclass(frozen=True, slots=True)
class VideoUploadPolicy:
    """Immutable policy object applied when a file is selected."""

    mime_prefix: str
    max_size_bytes: int

    def violation(self, *, content_type: str, size: int) -> Optional[str]:
        """Return a user-facing reason when the file is rejected, else None."""
        if not (content_type or "").lower().startswith(self.mime_prefix):
            return SELECT_VIDEO_MESSAGE
        if size > self.max_size_bytes:
            return f"File size exceeds {_limit_label(self.max_size_bytes)} limit"
        return None


def default_policy() -> VideoUploadPolicy:
    """Policy with the size cap resolved from config at call time."""
    return VideoUploadPolicy(mime_prefix=VIDEO_MIME_PREFIX, max_size_bytes=get_video_max_upload_bytes())


__all__ = ["VIDEO_MIME_PREFIX", "SELECT_VIDEO_MESSAGE", "VideoUploadPolicy", "default_policy"]
