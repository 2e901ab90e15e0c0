"""Tests for the session controller: accounts, refresh, consent and uploads."""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest

import youtube_session as ys
from conftest import FakeHttp, FakeResponse, ImmediateExecutor, ManualExecutor
from utils import SettingsStore
from youtube_auth import OAUTH_TOKEN_URI, Credential, TokenRevocationSignal, YouTubeAuth
from youtube_config import AppConfig
from youtube_errors import ErrorKind, FetchResult
from youtube_models import ProfileInfo, VideoSummary
from youtube_uploads import ApiSession

VIDEO = VideoSummary("v1", "First upload", "public")


class FakeAuth:
    def __init__(self, tokens: Optional[Dict[str, Optional[str]]] = None):
        self.tokens: Dict[str, Optional[str]] = dict(tokens or {})
        self.invalidated: List[str] = []

    def credential_for(self, account: str, generation: int = 0) -> Credential:
        return Credential(account=account, access_token=self.tokens.get(account), generation=generation)

    def invalidate_token(self, account: str) -> None:
        self.invalidated.append(account)

    def request_consent(self, account, error=None) -> bool:  # pragma: no cover - tests pass consent_flow
        raise AssertionError("consent flow not stubbed")


class RecordingView:
    def __init__(self):
        self.profiles: List[Optional[ProfileInfo]] = []
        self.video_lists: List[List[VideoSummary]] = []
        self.busy: List[bool] = []
        self.notices: List[str] = []

    def set_profile_info(self, profile):
        self.profiles.append(profile)

    def set_videos(self, videos):
        self.video_lists.append(list(videos))

    def set_busy(self, busy):
        self.busy.append(busy)

    def show_notice(self, message):
        self.notices.append(message)


class RecordingDirectView:
    def __init__(self):
        self.panned: List[VideoSummary] = []

    def pan_to_video(self, video):
        self.panned.append(video)


class RecordingUploader:
    def __init__(self):
        self.submitted: List[tuple] = []

    def submit(self, file_ref, account, playlist_id):
        self.submitted.append((file_ref, account, playlist_id))


class Consent:
    def __init__(self, auth: FakeAuth, grant: bool = True, token: str = "granted-token"):
        self.auth = auth
        self.grant = grant
        self.token = token
        self.calls: List[str] = []

    def __call__(self, account, error) -> bool:
        self.calls.append(account)
        if self.grant:
            self.auth.tokens[account] = self.token
        return self.grant


@pytest.fixture
def fetch_calls(monkeypatch: pytest.MonkeyPatch) -> List[tuple]:
    """Replace both fetchers; they fail with a consent error when the credential has no token."""
    calls: List[tuple] = []

    def fake_profile(api, credential):
        calls.append(("profile", credential))
        if not credential.usable:
            return FetchResult.failure(ErrorKind.RECOVERABLE_AUTH, "consent", "consentRequired")
        return FetchResult.success(ProfileInfo(credential.account, f"name of {credential.account}"))

    def fake_videos(api, credential):
        calls.append(("videos", credential))
        if not credential.usable:
            return FetchResult.failure(ErrorKind.RECOVERABLE_AUTH, "consent", "consentRequired")
        return FetchResult.success([VIDEO])

    monkeypatch.setattr(ys, "fetch_profile", fake_profile)
    monkeypatch.setattr(ys, "fetch_uploaded_videos", fake_videos)
    return calls


@pytest.fixture
def settings(tmp_path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.json")


def make_controller(settings, auth, view=None, **kwargs) -> ys.SessionController:
    kwargs.setdefault("executor", ImmediateExecutor())
    return ys.SessionController(
        AppConfig(upload_playlist="PLuploads"),
        auth,
        settings,
        uploads_view=view or RecordingView(),
        api=ApiSession(http=FakeHttp()),
        **kwargs,
    )


def kinds(calls) -> List[str]:
    return [kind for kind, _ in calls]


def test_selected_account_survives_restart(settings, fetch_calls) -> None:
    auth = FakeAuth({"a@example.com": "t"})
    make_controller(settings, auth).select_account("a@example.com")

    reloaded = make_controller(SettingsStore(settings.path), auth)

    assert reloaded.load_persisted_account() == "a@example.com"
    assert len(fetch_calls) == 2


def test_load_persisted_account_does_not_fetch(settings, fetch_calls) -> None:
    settings.put(ys.ACCOUNT_KEY, "a@example.com")

    assert make_controller(settings, FakeAuth()).load_persisted_account() == "a@example.com"
    assert fetch_calls == []


def test_refresh_without_account_makes_no_calls(settings, fetch_calls) -> None:
    controller = make_controller(settings, FakeAuth())

    assert controller.refresh() is False
    assert fetch_calls == []
    assert controller.state is ys.SessionState.UNAUTHENTICATED


def test_start_without_account_prompts_before_fetching(settings, fetch_calls) -> None:
    order: List[str] = []

    def picker():
        order.append("picker")
        assert fetch_calls == []
        return "b@example.com"

    view = RecordingView()
    controller = make_controller(settings, FakeAuth({"b@example.com": "t"}), view, account_picker=picker)
    controller.start()

    assert order == ["picker"]
    assert sorted(kinds(fetch_calls)) == ["profile", "videos"]
    assert settings.get(ys.ACCOUNT_KEY) == "b@example.com"
    assert view.video_lists == [[VIDEO]]
    assert controller.state is ys.SessionState.IDLE


def test_cancelled_account_picker_leaves_session_unauthenticated(settings, fetch_calls) -> None:
    controller = make_controller(settings, FakeAuth(), account_picker=lambda: None)
    controller.start()

    assert fetch_calls == []
    assert controller.account is None
    assert controller.state is ys.SessionState.UNAUTHENTICATED


def test_start_prefers_saved_session_state(settings, fetch_calls) -> None:
    settings.put(ys.ACCOUNT_KEY, "persisted@example.com")
    auth = FakeAuth({"resumed@example.com": "t"})
    controller = make_controller(settings, auth)

    controller.start({ys.ACCOUNT_KEY: "resumed@example.com"})

    assert {cred.account for _, cred in fetch_calls} == {"resumed@example.com"}
    assert controller.save_state() == {ys.ACCOUNT_KEY: "resumed@example.com"}
    # Resuming does not count as a new selection.
    assert settings.get(ys.ACCOUNT_KEY) == "persisted@example.com"


def test_refresh_updates_both_views(settings, fetch_calls) -> None:
    view = RecordingView()
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), view)
    controller.select_account("a@example.com")

    assert view.profiles == [ProfileInfo("a@example.com", "name of a@example.com")]
    assert view.video_lists == [[VIDEO]]
    assert view.busy == [True, False]
    assert view.notices == []


def test_consent_retries_only_the_operation_that_needed_it(settings, fetch_calls, monkeypatch) -> None:
    def videos_ignore_token(api, credential):
        fetch_calls.append(("videos", credential))
        return FetchResult.success([VIDEO])

    monkeypatch.setattr(ys, "fetch_uploaded_videos", videos_ignore_token)
    auth = FakeAuth({"a@example.com": None})
    consent = Consent(auth)
    view = RecordingView()
    controller = make_controller(settings, auth, view, consent_flow=consent)

    controller.select_account("a@example.com")

    assert consent.calls == ["a@example.com"]
    assert kinds(fetch_calls) == ["profile", "profile", "videos"]
    retried = fetch_calls[1][1]
    assert retried.access_token == "granted-token"
    assert view.profiles == [ProfileInfo("a@example.com", "name of a@example.com")]
    assert view.video_lists == [[VIDEO]]
    assert controller.credential.access_token == "granted-token"
    assert controller.state is ys.SessionState.IDLE


def test_consent_shared_by_concurrent_fetches(settings, fetch_calls) -> None:
    auth = FakeAuth({"a@example.com": None})
    consent = Consent(auth)
    view = RecordingView()
    controller = make_controller(settings, auth, view, consent_flow=consent)

    controller.select_account("a@example.com")

    # The second fetch reuses the credential obtained by the first consent.
    assert consent.calls == ["a@example.com"]
    assert kinds(fetch_calls) == ["profile", "profile", "videos", "videos"]
    assert view.video_lists == [[VIDEO]]


def test_only_one_retry_per_consent(settings, fetch_calls, monkeypatch) -> None:
    def always_denied(api, credential):
        fetch_calls.append(("profile", credential))
        return FetchResult.failure(ErrorKind.RECOVERABLE_AUTH, "scope missing", "insufficientPermissions")

    monkeypatch.setattr(ys, "fetch_profile", always_denied)
    auth = FakeAuth({"a@example.com": "stale"})
    consent = Consent(auth)
    view = RecordingView()
    controller = make_controller(settings, auth, view, consent_flow=consent)

    controller.select_account("a@example.com")

    assert kinds(fetch_calls).count("profile") == 2
    assert consent.calls == ["a@example.com"]
    assert view.profiles == []
    assert any("Authorization required" in notice for notice in view.notices)


def test_declined_consent_prompts_for_another_account(settings, fetch_calls) -> None:
    auth = FakeAuth({"a@example.com": None, "b@example.com": "t"})
    consent = Consent(auth, grant=False)
    picks = ["b@example.com"]
    view = RecordingView()
    controller = make_controller(settings, auth, view, consent_flow=consent, account_picker=lambda: picks.pop(0))

    controller.select_account("a@example.com")

    assert consent.calls == ["a@example.com"]
    assert controller.account == "b@example.com"
    assert settings.get(ys.ACCOUNT_KEY) == "b@example.com"
    assert view.profiles == [ProfileInfo("b@example.com", "name of b@example.com")]
    assert view.video_lists == [[VIDEO]]
    assert any("not granted" in notice for notice in view.notices)


def test_declined_consent_with_cancelled_picker(settings, fetch_calls, monkeypatch) -> None:
    def videos_ignore_token(api, credential):
        fetch_calls.append(("videos", credential))
        return FetchResult.success([VIDEO])

    monkeypatch.setattr(ys, "fetch_uploaded_videos", videos_ignore_token)
    auth = FakeAuth({"a@example.com": None})
    view = RecordingView()
    controller = make_controller(
        settings, auth, view, consent_flow=Consent(auth, grant=False), account_picker=lambda: None
    )

    controller.select_account("a@example.com")

    assert controller.state is ys.SessionState.UNAUTHENTICATED
    assert kinds(fetch_calls) == ["profile", "videos"]
    # The uploads fetch is unaffected by the profile's consent problem.
    assert view.video_lists == [[VIDEO]]
    assert view.profiles == []


def test_switching_accounts_mid_refresh_uses_latest_credential(settings, fetch_calls) -> None:
    executor = ManualExecutor()
    auth = FakeAuth({"a@example.com": "token-a", "b@example.com": "token-b"})
    view = RecordingView()
    controller = make_controller(settings, auth, view, executor=executor)

    controller.select_account("a@example.com")
    controller.select_account("b@example.com")
    executor.run_all()

    assert {cred.access_token for _, cred in fetch_calls} == {"token-b"}
    assert view.profiles == [ProfileInfo("b@example.com", "name of b@example.com")]
    assert view.video_lists == [[VIDEO]]
    assert controller.wait(timeout=0)


def test_results_after_close_are_discarded(settings, fetch_calls) -> None:
    executor = ManualExecutor()
    view = RecordingView()
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), view, executor=executor)

    controller.select_account("a@example.com")
    controller.close()
    executor.run_all()

    assert executor.shut_down
    assert view.profiles == []
    assert view.video_lists == []
    assert controller.state is ys.SessionState.CLOSED
    assert controller.refresh() is False


def test_failures_keep_previous_videos_and_show_notice(settings, fetch_calls, monkeypatch) -> None:
    view = RecordingView()
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), view)
    controller.select_account("a@example.com")

    monkeypatch.setattr(
        ys, "fetch_uploaded_videos", lambda api, cred: FetchResult.failure(ErrorKind.TRANSIENT, "backend down")
    )
    monkeypatch.setattr(
        ys, "fetch_profile", lambda api, cred: FetchResult.failure(ErrorKind.PERMANENT, "bad request")
    )
    controller.refresh()

    assert view.video_lists == [[VIDEO]]
    assert len(view.notices) == 2
    assert view.busy == [True, False, True, False]


def test_unexpected_exception_becomes_notice(settings, fetch_calls, monkeypatch) -> None:
    def broken(api, credential):
        raise RuntimeError("boom")

    monkeypatch.setattr(ys, "fetch_profile", broken)
    view = RecordingView()
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), view)

    controller.select_account("a@example.com")

    assert view.notices == ["Failed to load profile: boom"]
    assert view.video_lists == [[VIDEO]]


def test_revocation_rebuilds_credential_and_restarts_fetches(settings, fetch_calls) -> None:
    executor = ManualExecutor()
    signal = TokenRevocationSignal()
    auth = FakeAuth({"a@example.com": "old"})
    view = RecordingView()
    controller = make_controller(settings, auth, view, executor=executor, revocation=signal)
    controller.start({ys.ACCOUNT_KEY: "a@example.com"})
    first_generation = controller.credential.generation

    auth.tokens["a@example.com"] = "new"
    signal.notify("a@example.com")
    signal.notify("someone-else@example.com")
    executor.run_all()

    assert auth.invalidated == ["a@example.com"]
    assert controller.credential.generation == first_generation + 1
    assert [cred.access_token for _, cred in fetch_calls] == ["new", "new"]
    assert len(view.video_lists) == 1


def test_close_unsubscribes_from_revocation(settings, fetch_calls) -> None:
    signal = TokenRevocationSignal()
    auth = FakeAuth({"a@example.com": "t"})
    controller = make_controller(settings, auth, revocation=signal)
    controller.start({ys.ACCOUNT_KEY: "a@example.com"})

    controller.close()
    signal.notify("a@example.com")

    assert auth.invalidated == []


def test_upload_requires_account_and_selection(settings, fetch_calls) -> None:
    uploader = RecordingUploader()
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), uploader=uploader)

    controller.select_file("/videos/clip.mp4")
    assert controller.can_upload is False
    assert controller.upload() is False

    controller.select_account("a@example.com")
    assert controller.can_upload is True
    assert controller.upload() is True
    assert uploader.submitted == [("/videos/clip.mp4", "a@example.com", "PLuploads")]
    assert controller.selection.is_empty
    assert controller.can_upload is False


def test_selecting_video_replaces_file_and_pans(settings, fetch_calls) -> None:
    uploader = RecordingUploader()
    direct = RecordingDirectView()
    controller = make_controller(
        settings, FakeAuth({"a@example.com": "t"}), direct_view=direct, uploader=uploader
    )
    controller.select_account("a@example.com")

    controller.select_file("/videos/clip.mp4")
    controller.select_video(VIDEO)

    assert controller.selection.file_ref is None
    assert controller.selection.video == VIDEO
    assert direct.panned == [VIDEO]
    assert controller.upload() is False
    assert uploader.submitted == []
    assert controller.selection.is_empty

    controller.select_video(VIDEO)
    controller.select_file("/videos/other.mp4")
    assert controller.selection.video is None


def test_background_workers_deliver_results(settings, fetch_calls) -> None:
    view = RecordingView()
    controller = ys.SessionController(
        AppConfig(upload_playlist="PLuploads"),
        FakeAuth({"a@example.com": "t"}),
        settings,
        uploads_view=view,
        api=ApiSession(http=FakeHttp()),
    )
    with controller:
        controller.select_account("a@example.com")
        assert controller.wait(timeout=5)

    assert view.video_lists == [[VIDEO]]
    assert len(view.profiles) == 1


def test_empty_file_selection_is_rejected(settings, fetch_calls) -> None:
    controller = make_controller(settings, FakeAuth({"a@example.com": "t"}), uploader=RecordingUploader())
    controller.select_account("a@example.com")

    for file_ref in ("", "   "):
        with pytest.raises(ValueError):
            controller.select_file(file_ref)

    assert controller.selection.is_empty
    assert controller.can_upload is False


def test_malformed_token_refresh_falls_back_to_consent(settings, fetch_calls, tmp_path) -> None:
    auth = YouTubeAuth(
        AppConfig(client_id="client-id", client_secret="client-secret", token_cache_dir=str(tmp_path / "tokens")),
        http=FakeHttp({OAUTH_TOKEN_URI: [FakeResponse(payload={"unexpected": 1})]}),
    )
    auth.save_token("a@example.com", "expired", expires_in=0, refresh_token="r")
    consent_calls = []

    def consent(account, error) -> bool:
        consent_calls.append(account)
        auth.save_token(account, "granted")
        return True

    view = RecordingView()
    controller = make_controller(settings, auth, view=view, consent_flow=consent)

    controller.select_account("a@example.com")

    assert consent_calls == ["a@example.com"]
    assert controller.credential.access_token == "granted"
    assert view.video_lists == [[VIDEO]]
