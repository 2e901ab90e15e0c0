#!/usr/bin/env python3
"""
Session controller for the YouTube uploads client.

Owns the chosen account and its credential, runs the profile and uploads
fetches on background workers, and routes their outcomes to the views. A
fetch that needs user consent waits for the consent flow and is then retried
once; declining consent sends the user back to account selection.

Every credential carries the generation of the account session it was built
for. Choosing another account or receiving a revocation bumps the
generation, and results computed under an older generation are dropped.
"""

import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from utils import SettingsStore, get_logger
from youtube_auth import Credential, TokenRevocationSignal, YouTubeAuth
from youtube_config import AppConfig
from youtube_errors import ErrorKind, FetchError, FetchResult
from youtube_models import PendingSelection, ProfileInfo, VideoSummary
from youtube_uploads import ApiSession, fetch_profile, fetch_uploaded_videos

ACCOUNT_KEY = "accountName"

logger = get_logger(__name__)


class SessionState(Enum):
    UNAUTHENTICATED = "unauthenticated"
    ACCOUNT_CHOSEN = "account_chosen"
    CREDENTIAL_READY = "credential_ready"
    REFRESHING = "refreshing"
    AWAITING_CONSENT = "awaiting_consent"
    IDLE = "idle"
    CLOSED = "closed"


class FetchKind(Enum):
    PROFILE = "profile"
    VIDEOS = "videos"


class UploadsView(Protocol):
    def set_profile_info(self, profile: Optional[ProfileInfo]) -> None: ...

    def set_videos(self, videos: List[VideoSummary]) -> None: ...

    def set_busy(self, busy: bool) -> None: ...

    def show_notice(self, message: str) -> None: ...


class DirectView(Protocol):
    def pan_to_video(self, video: VideoSummary) -> None: ...


class UploadService(Protocol):
    def submit(self, file_ref: str, account: str, playlist_id: str) -> None: ...


AccountPicker = Callable[[], Optional[str]]
ConsentFlow = Callable[[str, FetchError], bool]
Dispatcher = Callable[[Callable[[], None]], None]


def call_inline(fn: Callable[[], None]) -> None:
    fn()


class SessionController:
    def __init__(
        self,
        config: AppConfig,
        auth: YouTubeAuth,
        settings: SettingsStore,
        uploads_view: UploadsView,
        direct_view: Optional[DirectView] = None,
        api: Optional[ApiSession] = None,
        account_picker: Optional[AccountPicker] = None,
        consent_flow: Optional[ConsentFlow] = None,
        uploader: Optional[UploadService] = None,
        revocation: Optional[TokenRevocationSignal] = None,
        dispatcher: Dispatcher = call_inline,
        executor: Optional[Executor] = None,
    ):
        self.config = config
        self.auth = auth
        self.settings = settings
        self.uploads_view = uploads_view
        self.direct_view = direct_view
        self.api = api or ApiSession.from_config(config)
        self.account_picker = account_picker
        self.consent_flow = consent_flow or auth.request_consent
        self.uploader = uploader
        self.revocation = revocation
        self.dispatcher = dispatcher
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="session-fetch")

        self._lock = threading.RLock()
        self._idle = threading.Condition(self._lock)
        self._consent_lock = threading.Lock()
        self._account: Optional[str] = None
        self._credential: Optional[Credential] = None
        self._generation = 0
        self._declined: Optional[Credential] = None
        self._selection = PendingSelection()
        self._inflight = 0
        self._closed = False
        self._state = SessionState.UNAUTHENTICATED
        self._unsubscribe: Optional[Callable[[], None]] = None

    # -- state -------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def account(self) -> Optional[str]:
        return self._account

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    @property
    def selection(self) -> PendingSelection:
        return self._selection

    def _set_state(self, state: SessionState) -> None:
        with self._lock:
            if self._closed or state is self._state:
                return
            logger.debug("Session state %s -> %s", self._state.value, state.value)
            self._state = state

    def _is_current(self, credential: Credential) -> bool:
        with self._lock:
            return not self._closed and credential.generation == self._generation

    # -- lifecycle -----------------------------------------------------------

    def load_persisted_account(self) -> Optional[str]:
        """Read the previously selected account; does not touch the network."""
        return self.settings.get(ACCOUNT_KEY)

    def save_state(self) -> Dict[str, Any]:
        """Transient session state to hand back to `start` after a resume."""
        return {ACCOUNT_KEY: self._account}

    def start(self, saved_state: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("session already closed")
            self._subscribe_revocation()

        account = (saved_state or {}).get(ACCOUNT_KEY) or self.load_persisted_account()
        if not account:
            logger.info("No account selected yet")
            self.choose_account()
            return

        if self._activate(account, persist=False):
            self.refresh()

    def _subscribe_revocation(self) -> None:
        with self._lock:
            if self.revocation is not None and self._unsubscribe is None and not self._closed:
                self._unsubscribe = self.revocation.subscribe(self._on_token_revoked)

    def close(self) -> None:
        """End the session. Pending results are discarded; safe to call twice."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._state = SessionState.CLOSED
            unsubscribe, self._unsubscribe = self._unsubscribe, None
            self._idle.notify_all()
        if unsubscribe is not None:
            unsubscribe()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("Session closed")

    def __enter__(self) -> "SessionController":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no fetch is pending. Returns False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._inflight == 0 or self._closed, timeout)

    # -- account -------------------------------------------------------------

    def _activate(self, account: str, persist: bool) -> bool:
        with self._lock:
            if self._closed:
                return False
            self._account = account
            self._generation += 1
            generation = self._generation
            self._credential = None
            self._declined = None
            self._state = SessionState.ACCOUNT_CHOSEN
            if persist:
                self.settings.put(ACCOUNT_KEY, account)

        self._subscribe_revocation()
        logger.info("Using account %s", account)
        credential = self.auth.credential_for(account, generation)

        with self._lock:
            if self._closed or generation != self._generation:
                return False
            self._credential = credential
            self._set_state(SessionState.CREDENTIAL_READY)
        return True

    def select_account(self, identity: str) -> None:
        """Switch to `identity`, persist it, rebuild the credential and refresh."""
        if self._activate(identity, persist=True):
            self.refresh()

    def choose_account(self) -> Optional[str]:
        """Ask the account picker for an identity; cancellation changes nothing."""
        if self._closed:
            return None
        identity = self.account_picker() if self.account_picker else None
        if not identity:
            logger.info("Account selection cancelled")
            return None
        self.select_account(identity)
        return identity

    def _on_token_revoked(self, account: str) -> None:
        with self._lock:
            if self._closed or account != self._account:
                return
            restart = self._inflight > 0
        self.auth.invalidate_token(account)
        if self._activate(account, persist=False) and restart:
            logger.info("Restarting fetches for %s after token revocation", account)
            self.refresh()

    # -- refresh -------------------------------------------------------------

    def refresh(self) -> bool:
        """Start profile and uploads fetches. Returns False when there is no account."""
        with self._lock:
            if self._closed or self._account is None or self._credential is None:
                return False
            credential = self._credential
            self._state = SessionState.REFRESHING
            self._inflight += 2

        self.uploads_view.set_busy(True)
        for kind in (FetchKind.PROFILE, FetchKind.VIDEOS):
            try:
                self._executor.submit(self._run, kind, credential)
            except RuntimeError:
                # executor already shut down by close()
                self._task_done()
        return True

    def _fetch(self, kind: FetchKind, credential: Credential) -> FetchResult:
        if kind is FetchKind.PROFILE:
            return fetch_profile(self.api, credential)
        return fetch_uploaded_videos(self.api, credential)

    def _run(self, kind: FetchKind, credential: Credential) -> None:
        try:
            if not self._is_current(credential):
                logger.debug("Skipping %s fetch with outdated credential", kind.value)
                return
            try:
                result = self._fetch(kind, credential)
                if result.kind is ErrorKind.RECOVERABLE_AUTH and self._is_current(credential):
                    result = self._recover(kind, credential, result.error)
            except Exception as exc:
                logger.exception("Unexpected failure during %s fetch", kind.value)
                result = FetchResult.failure(ErrorKind.PERMANENT, str(exc), reason=type(exc).__name__)
            if result is not None:
                self.dispatcher(lambda: self._deliver(kind, credential, result))
        finally:
            self._task_done()

    def _recover(self, kind: FetchKind, credential: Credential, error: FetchError) -> Optional[FetchResult]:
        """Get consent for `credential`'s account, then retry `kind` once.

        Returns None when consent was declined; the caller delivers nothing.
        """
        with self._consent_lock:
            with self._lock:
                if not self._is_current(credential):
                    return FetchResult(error=error)
                current = self._credential
                if self._declined == credential:
                    return FetchResult(error=error)

            granted = True
            if current is None or current.access_token == credential.access_token:
                self._set_state(SessionState.AWAITING_CONSENT)
                granted = self.consent_flow(credential.account, error)
                if granted:
                    refreshed = self.auth.credential_for(credential.account, credential.generation)
                    with self._lock:
                        if not self._is_current(credential):
                            return FetchResult(error=error)
                        self._credential = current = refreshed
                        self._state = SessionState.REFRESHING
                else:
                    with self._lock:
                        self._declined = credential

        if not granted:
            logger.info("Consent declined for %s", credential.account)
            self.dispatcher(lambda: self._consent_declined(credential))
            return None

        logger.info("Retrying %s fetch for %s after consent", kind.value, credential.account)
        return self._fetch(kind, current)

    def _consent_declined(self, credential: Credential) -> None:
        if not self._is_current(credential):
            return
        self._set_state(SessionState.UNAUTHENTICATED)
        self.uploads_view.set_busy(False)
        self.uploads_view.show_notice(f"Access for {credential.account} was not granted; choose an account.")
        self.choose_account()

    def _deliver(self, kind: FetchKind, credential: Credential, result: FetchResult) -> None:
        with self._lock:
            if not self._is_current(credential):
                logger.debug("Dropping stale %s result for %s", kind.value, credential.account)
                return

            if kind is FetchKind.VIDEOS:
                self.uploads_view.set_busy(False)

            if result.ok:
                if kind is FetchKind.PROFILE:
                    self.uploads_view.set_profile_info(result.value)
                else:
                    self.uploads_view.set_videos(result.value)
                return

            error = result.error
            if error.kind is ErrorKind.TRANSIENT:
                logger.warning("Could not load %s: %s", kind.value, error)
                self.uploads_view.show_notice(f"Could not load {kind.value} right now: {error.message}")
            elif error.kind is ErrorKind.RECOVERABLE_AUTH:
                logger.warning("Authorization still missing for %s: %s", kind.value, error)
                self.uploads_view.show_notice(f"Authorization required to load {kind.value}.")
            else:
                logger.error("Failed to load %s: %s", kind.value, error)
                self.uploads_view.show_notice(f"Failed to load {kind.value}: {error.message}")

    def _task_done(self) -> None:
        with self._idle:
            self._inflight -= 1
            if self._inflight <= 0:
                self._inflight = 0
                if self._state in (SessionState.REFRESHING, SessionState.AWAITING_CONSENT):
                    self._state = SessionState.IDLE
                self._idle.notify_all()

    # -- selection and upload ------------------------------------------------

    def select_file(self, file_ref: str) -> None:
        """Remember a picked or recorded media file; clears a selected video."""
        if not file_ref or not file_ref.strip():
            raise ValueError("file_ref must name a media file")
        with self._lock:
            self._selection = PendingSelection.for_file(file_ref)

    def select_video(self, video: VideoSummary) -> None:
        """Remember a fetched video for re-use; clears a selected file."""
        with self._lock:
            self._selection = PendingSelection.for_video(video)
        if self.direct_view is not None:
            self.direct_view.pan_to_video(video)

    @property
    def can_upload(self) -> bool:
        with self._lock:
            return self._account is not None and not self._selection.is_empty

    def upload(self) -> bool:
        """Act on the pending selection. Returns True when a file was submitted.

        The upload service receives the file, the account and the configured
        playlist; the transfer itself happens outside the session.
        """
        with self._lock:
            if not self.can_upload or self._closed:
                return False
            account, selection = self._account, self._selection
            self._selection = PendingSelection()

        if selection.video is not None:
            # Re-using an already uploaded video has no submission step.
            logger.info("Selected existing video %s; nothing to upload", selection.video.video_id)
            return False

        if self.uploader is None:
            logger.warning("No upload service configured; %s not submitted", selection.file_ref)
            return False

        logger.info("Submitting %s for %s", selection.file_ref, account)
        self.uploader.submit(selection.file_ref, account, self.config.upload_playlist)
        return True
