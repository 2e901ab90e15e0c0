"""
Terminal renditions of the session's collaborators: the uploads list, the
video detail view, the account picker, the upload hand-off and the
missing-configuration screen.
"""

import json
import os
import sys
from typing import List, Optional, TextIO, Tuple

from utils import get_logger
from youtube_models import MissingConfig, ProfileInfo, VideoSummary

logger = get_logger(__name__)


class ConsoleUploadsView:
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.profile: Optional[ProfileInfo] = None
        self.videos: List[VideoSummary] = []
        self.notices: List[str] = []

    def _print(self, text: str = "") -> None:
        print(text, file=self.stream)

    def set_profile_info(self, profile: Optional[ProfileInfo]) -> None:
        self.profile = profile
        if profile is not None:
            self._print(f"Signed in as {profile.display_name}")

    def set_videos(self, videos: List[VideoSummary]) -> None:
        self.videos = list(videos)
        print_table(self.videos, self.stream)

    def set_busy(self, busy: bool) -> None:
        if busy:
            self._print("Loading uploads...")

    def show_notice(self, message: str) -> None:
        self.notices.append(message)
        self._print(f"! {message}")


class ConsoleDirectView:
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.current: Optional[VideoSummary] = None

    def pan_to_video(self, video: VideoSummary) -> None:
        self.current = video
        print(f"Selected: {video.title} ({video.watch_url})", file=self.stream)


class ConsoleUploadService:
    """Reports upload hand-offs; the transfer itself runs outside this process."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self.submitted: List[Tuple[str, str, Optional[str]]] = []

    def submit(self, file_ref: str, account: str, playlist_id: Optional[str]) -> None:
        self.submitted.append((file_ref, account, playlist_id))
        print(f"Queued {os.path.basename(file_ref)} for {account} (playlist {playlist_id})", file=self.stream)


def prompt_account() -> Optional[str]:
    """Ask for the Google account to use; empty input cancels."""
    try:
        account = input("Google account to use (empty to cancel): ").strip()
    except EOFError:
        return None
    return account or None


def print_table(rows: List[VideoSummary], stream: Optional[TextIO] = None) -> None:
    """Print public uploads in table format."""
    stream = stream or sys.stdout
    print(f"\n{len(rows)} public uploads:", file=stream)
    print("-" * 100, file=stream)
    print(f"{'#':>4}  {'Title':<50}  {'URL':<40}", file=stream)
    print("-" * 100, file=stream)
    for i, video in enumerate(rows, 1):
        print(f"{i:>4}  {video.title[:50]:<50}  {video.watch_url:<40}", file=stream)
    print("-" * 100, file=stream)


def render_missing_configurations(missing: List[MissingConfig], stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stderr
    print("Developer setup required:\n", file=stream)
    for item in missing:
        print(f"  * {item.title}", file=stream)
        print(f"    {item.body}\n", file=stream)


def save_to_json(rows: List[VideoSummary], path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([row.as_dict() for row in rows], f, ensure_ascii=False, indent=2)
    logger.info("Results written to %s", path)
