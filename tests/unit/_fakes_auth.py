from __future__ import annotations

import copy
import json
from datetime import datetime, timedelta, timezone

import httpx

from twitter_session.application.ports.clock_port import SystemClock
from twitter_session.config import Settings
from twitter_session.domain.model import FlowSubtaskRequest, FlowTokenResult
from twitter_session.infrastructure.auth.session_store import SessionStore
from twitter_session.infrastructure.client import TwitterSessionClient
from twitter_session.infrastructure.rate_limit import ErrorRateLimitStrategy

GUEST_URL = "https://api.x.com/1.1/guest/activate.json"
FLOW_PATH = "/1.1/onboarding/task.json"
T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FixedClock(SystemClock):
    def __init__(self, now: datetime = T0) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now = self._now + timedelta(**kwargs)


class AdvancingSleep:
    """Fake sleep that moves a FixedClock forward instead of blocking."""

    def __init__(self, clock: FixedClock) -> None:
        self.clock = clock
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds=seconds)


class FakeStore:
    def __init__(self) -> None:
        self._cookies: list[dict] = []
        self._exp = None
        self._active = False
    def load(self):
        return copy.deepcopy(self._cookies), self._exp, self._active
    def save(self, cookies, exp):
        self._cookies = copy.deepcopy(cookies)
        self._exp = exp
        self._active = True
    def mark_inactive(self):
        self._active = False


class FakeUserAuth:
    def __init__(self, logged_in=True, login_error: Exception | None = None) -> None:
        self.session = SessionStore(bearer_token="test-bearer")
        self.logged_in = logged_in
        self.login_error = login_error
        self.login_calls = 0
    async def is_logged_in(self, verify: bool = False) -> bool:
        return self.logged_in
    async def login(self, username, password, email=None, two_factor_secret=None):
        self.login_calls += 1
        if self.login_error is not None:
            raise self.login_error
        self.session.set_cookies(["ct0=fresh; Domain=.x.com; Path=/", "auth_token=tok; Domain=.x.com; Path=/"])


class FakeFlowApi:
    """Records subtask requests and replays queued results."""

    def __init__(self, flow_token: str = "token1", results: list[FlowTokenResult] | None = None) -> None:
        self.flow_token = flow_token
        self.results = list(results or [])
        self.sent: list[FlowSubtaskRequest] = []
    async def send_flow_request(self, request):
        self.sent.append(request)
        return self.results.pop(0)
    def get_flow_token(self) -> str:
        return self.flow_token


def make_client(clock: FixedClock | None = None, **kwargs) -> TwitterSessionClient:
    kwargs.setdefault("rate_limit_strategy", ErrorRateLimitStrategy())
    return TwitterSessionClient(
        Settings(bearer_token="test-bearer", max_flow_steps=10),
        clock=clock or FixedClock(),
        **kwargs,
    )


def guest_response(token: str = "test-guest-token") -> httpx.Response:
    return httpx.Response(200, json={"guest_token": token})


def subtask_response(token: str, *subtask_ids: str, **extra) -> httpx.Response:
    body = {"flow_token": token, "subtasks": [{"subtask_id": s} for s in subtask_ids], **extra}
    return httpx.Response(200, json=body)


def success_response(token: str, headers: dict[str, str] | None = None) -> httpx.Response:
    return httpx.Response(200, json={"flow_token": token, "status": "success", "subtasks": []}, headers=headers)


def error_response(message: str, code: int | None = None) -> httpx.Response:
    err = {"message": message}
    if code is not None:
        err["code"] = code
    return httpx.Response(200, json={"errors": [err]})


def body_of(request: httpx.Request) -> dict:
    return json.loads(request.content)
