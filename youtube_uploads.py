#!/usr/bin/env python3
"""
YouTube Uploads Fetcher
Reads the signed-in account's profile and its public uploads.

Uploads are resolved the way the Data API intends: the channel's
"uploads" playlist, the first page of its items, then a batched videos.list
for titles and privacy status.
"""

from typing import Any, Dict, List, Optional

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from utils import QuotaLimitError, QuotaTracker, get_logger
from utils.quota import CHANNELS_QUOTA_COST, PLAYLIST_ITEMS_QUOTA_COST, VIDEOS_QUOTA_COST
from youtube_auth import Credential
from youtube_config import DEFAULT_MAX_ATTEMPTS, DEFAULT_TIMEOUT_SECONDS, AppConfig
from youtube_errors import ErrorKind, FetchResult, classify_exception, is_transient
from youtube_models import ProfileInfo, VideoSummary

YOUTUBE_API_BASE = "https://www.googleapis.com/youtube/v3"
PROFILE_URL = "https://www.googleapis.com/oauth2/v3/userinfo"

# Only the first page of the uploads playlist is shown.
MAX_PLAYLIST_ITEMS = 20


logger = get_logger(__name__)


class ApiSession:
    """Everything a fetch needs besides the credential.

    One instance lives as long as the session that owns it; fetch functions
    only read from it.
    """

    def __init__(
        self,
        http: Optional[Any] = None,
        api_key: Optional[str] = None,
        quota: Optional[QuotaTracker] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        wait: Optional[wait_base] = None,
    ):
        self.http = http or requests.Session()
        self.api_key = api_key
        self.quota = quota if quota is not None else QuotaTracker()
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.wait = wait or wait_exponential(multiplier=1, max=30)

    @classmethod
    def from_config(cls, config: AppConfig, **kwargs: Any) -> "ApiSession":
        return cls(api_key=config.api_key, max_attempts=config.max_attempts, timeout=config.request_timeout, **kwargs)

    def _log_retry(self, retry_state) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "Transient API error (attempt %d/%d): %s",
            retry_state.attempt_number,
            self.max_attempts,
            classify_exception(exc),
        )

    def _get_once(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
        logger.debug("GET %s %s", url, {k: v for k, v in params.items() if k != "key"})
        response = self.http.get(url, params=params, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_json(self, url: str, params: Dict[str, Any], credential: Credential) -> Dict[str, Any]:
        """GET with exponential backoff on transient failures.

        Raises the last exception once attempts are exhausted, or immediately
        for anything that is not transient.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._get_once, url, params, credential.headers())

    def data_api(self, resource: str, params: Dict[str, Any], credential: Credential, cost: int) -> Dict[str, Any]:
        self.quota.ensure_within_limit(cost)
        params = dict(params)
        if self.api_key:
            params["key"] = self.api_key
        data = self.get_json(f"{YOUTUBE_API_BASE}/{resource}", params, credential)
        self.quota.spend(f"{resource}.list", cost)
        return data


def _consent_required(credential: Credential) -> FetchResult:
    return FetchResult.failure(
        ErrorKind.RECOVERABLE_AUTH,
        f"Authorization required for {credential.account}",
        reason="consentRequired",
    )


def _failure_from(exc: BaseException, action: str) -> FetchResult:
    error = classify_exception(exc)
    logger.debug("%s failed: %s", action, error)
    return FetchResult(error=error)


def fetch_profile(api: ApiSession, credential: Credential) -> FetchResult[ProfileInfo]:
    """Fetch the signed-in user's basic profile."""
    if not credential.usable:
        return _consent_required(credential)

    try:
        payload = api.get_json(PROFILE_URL, {}, credential)
        return FetchResult.success(ProfileInfo.from_api(payload))
    except (requests.exceptions.RequestException, KeyError, ValueError) as exc:
        return _failure_from(exc, "profile fetch")


def get_uploads_playlist_id(api: ApiSession, credential: Credential) -> Optional[str]:
    """Return the uploads playlist of the credential's own channel, if it has one."""
    data = api.data_api("channels", {"part": "contentDetails", "mine": "true"}, credential, CHANNELS_QUOTA_COST)
    items = data.get("items") or []
    if not items:
        return None
    return items[0].get("contentDetails", {}).get("relatedPlaylists", {}).get("uploads")


def get_playlist_video_ids(api: ApiSession, credential: Credential, playlist_id: str) -> List[str]:
    params = {
        "part": "id,contentDetails",
        "playlistId": playlist_id,
        "maxResults": MAX_PLAYLIST_ITEMS,
    }
    data = api.data_api("playlistItems", params, credential, PLAYLIST_ITEMS_QUOTA_COST)
    items = (data.get("items") or [])[:MAX_PLAYLIST_ITEMS]
    return [item["contentDetails"]["videoId"] for item in items]


def get_video_details(api: ApiSession, credential: Credential, video_ids: List[str]) -> List[Dict[str, Any]]:
    if not video_ids:
        return []
    params = {"part": "id,snippet,status", "id": ",".join(video_ids)}
    data = api.data_api("videos", params, credential, VIDEOS_QUOTA_COST)
    return data.get("items") or []


def assemble_videos(video_items: List[Dict[str, Any]]) -> List[VideoSummary]:
    """Keep public videos only, ordered by title (stable for equal titles)."""
    summaries = [VideoSummary.from_api(item) for item in video_items]
    return sorted((v for v in summaries if v.is_public), key=lambda v: v.title)


def fetch_uploaded_videos(api: ApiSession, credential: Credential) -> FetchResult[List[VideoSummary]]:
    """Fetch the account's public uploads, sorted by title."""
    if not credential.usable:
        return _consent_required(credential)

    try:
        playlist_id = get_uploads_playlist_id(api, credential)
        if not playlist_id:
            logger.info("No uploads playlist for %s", credential.account)
            return FetchResult.success([])

        video_ids = get_playlist_video_ids(api, credential, playlist_id)
        if not video_ids:
            return FetchResult.success([])

        items = get_video_details(api, credential, video_ids)
        videos = assemble_videos(items)
    except QuotaLimitError as exc:
        logger.warning("Quota budget reached while fetching uploads: %s", exc)
        return FetchResult.failure(ErrorKind.TRANSIENT, str(exc), reason="quotaBudget")
    except (requests.exceptions.RequestException, KeyError, ValueError) as exc:
        return _failure_from(exc, "uploads fetch")

    logger.debug("Fetched %d uploads, %d public", len(items), len(videos))
    return FetchResult.success(videos)
