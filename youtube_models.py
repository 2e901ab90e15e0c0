"""
Value objects shared by the fetcher, the session controller and the views.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

YOUTUBE_WATCH_URL_PREFIX = "https://www.youtube.com/watch?v="

# Preferred thumbnail sizes, largest first.
_THUMBNAIL_SIZES = ("high", "medium", "default")


@dataclass(frozen=True)
class VideoSummary:
    """Display-ready reduction of a YouTube video resource."""

    video_id: str
    title: str
    privacy_status: str
    thumbnail_url: Optional[str] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "VideoSummary":
        snippet = item.get("snippet", {})
        thumbnails = snippet.get("thumbnails", {})
        thumbnail_url = None
        for size in _THUMBNAIL_SIZES:
            if size in thumbnails:
                thumbnail_url = thumbnails[size].get("url")
                break
        return cls(
            video_id=item["id"],
            title=snippet.get("title", ""),
            privacy_status=item.get("status", {}).get("privacyStatus", ""),
            thumbnail_url=thumbnail_url,
        )

    @property
    def is_public(self) -> bool:
        return self.privacy_status == "public"

    @property
    def watch_url(self) -> str:
        return f"{YOUTUBE_WATCH_URL_PREFIX}{self.video_id}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "videoId": self.video_id,
            "title": self.title,
            "privacyStatus": self.privacy_status,
            "thumbnail": self.thumbnail_url,
            "url": self.watch_url,
        }


@dataclass(frozen=True)
class ProfileInfo:
    account_id: str
    display_name: str
    image_url: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "ProfileInfo":
        return cls(
            account_id=payload["sub"],
            display_name=payload.get("name") or payload.get("email", ""),
            image_url=payload.get("picture"),
        )


@dataclass(frozen=True)
class PendingSelection:
    """What the next upload action acts on.

    Holds at most one of a local media file reference or a previously fetched
    video; choosing one clears the other.
    """

    file_ref: Optional[str] = None
    video: Optional[VideoSummary] = None

    def __post_init__(self) -> None:
        if self.file_ref is not None and self.video is not None:
            raise ValueError("a pending selection holds either a file or a video, not both")

    @classmethod
    def for_file(cls, file_ref: str) -> "PendingSelection":
        return cls(file_ref=file_ref)

    @classmethod
    def for_video(cls, video: VideoSummary) -> "PendingSelection":
        return cls(video=video)

    @property
    def is_empty(self) -> bool:
        return self.file_ref is None and self.video is None


@dataclass(frozen=True)
class MissingConfig:
    """A configuration item the developer still has to fill in, with the remedy."""

    title: str
    body: str
