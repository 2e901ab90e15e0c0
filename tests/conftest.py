"""Shared fakes for the uploads client tests."""

from __future__ import annotations

import sys
from concurrent.futures import Executor, Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import requests
from tenacity import wait_none

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from youtube_auth import Credential
from youtube_uploads import ApiSession


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, reason: str = "OK"):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.reason = reason
        self.text = str(self._payload)

    def json(self) -> Any:
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} {self.reason}", response=self)


def api_error(status: int, reason: str, message: str = "error") -> FakeResponse:
    return FakeResponse(
        status,
        {"error": {"code": status, "message": message, "errors": [{"reason": reason}]}},
        reason="Error",
    )


class FakeHttp:
    """Routes GET/POST calls by URL suffix to queued responses.

    The last queued response for a route is reused once the queue drains.
    Exception instances in the queue are raised instead of returned.
    """

    def __init__(self, routes: Optional[Dict[str, List[Any]]] = None):
        self.routes: Dict[str, List[Any]] = {k: list(v) for k, v in (routes or {}).items()}
        self.calls: List[Dict[str, Any]] = []

    def _respond(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        for suffix, queue in self.routes.items():
            if url.endswith(suffix):
                item = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(item, BaseException):
                    raise item
                return item
        raise AssertionError(f"unexpected request to {url}")

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._respond("POST", url, **kwargs)

    def calls_to(self, suffix: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["url"].endswith(suffix)]


class ImmediateExecutor(Executor):
    """Runs submitted work on the calling thread."""

    def submit(self, fn: Callable, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:  # pragma: no cover - surfaced through the future
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        pass


class ManualExecutor(Executor):
    """Queues submitted work until the test runs it, simulating slow workers."""

    def __init__(self):
        self.queue: List[Callable[[], Any]] = []
        self.shut_down = False

    def submit(self, fn: Callable, *args: Any, **kwargs: Any) -> Future:
        future: Future = Future()
        self.queue.append(lambda: future.set_result(fn(*args, **kwargs)))
        return future

    def run_all(self) -> None:
        while self.queue:
            self.queue.pop(0)()

    def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
        # Work already handed to a worker keeps running after shutdown.
        self.shut_down = True


@pytest.fixture
def credential() -> Credential:
    return Credential(account="creator@example.com", access_token="token-1", generation=1)


@pytest.fixture
def make_api() -> Callable[..., ApiSession]:
    def factory(http: FakeHttp, **kwargs: Any) -> ApiSession:
        kwargs.setdefault("max_attempts", 3)
        return ApiSession(http=http, wait=wait_none(), **kwargs)

    return factory
