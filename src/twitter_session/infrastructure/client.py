from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

import httpx

from twitter_session.application.ports.authenticator_port import AuthenticatorPort
from twitter_session.application.ports.clock_port import Clock, SystemClock
from twitter_session.application.ports.rate_limit_port import RateLimitStrategy
from twitter_session.application.ports.subtask_handler_port import FlowSubtaskHandler
from twitter_session.config import Settings, settings as default_settings
from twitter_session.infrastructure.adapters.http.httpx_client import HttpxClient
from twitter_session.infrastructure.auth.flow_engine import FlowEngine
from twitter_session.infrastructure.auth.guest_auth import GuestAuth
from twitter_session.infrastructure.auth.guest_token import GuestTokenManager
from twitter_session.infrastructure.auth.session_store import CookieInput, SessionStore
from twitter_session.infrastructure.auth.subtasks import SubtaskHandlerRegistry
from twitter_session.infrastructure.auth.user_auth import UserAuth
from twitter_session.infrastructure.request_pipeline import FetchTransformOptions, RequestPipeline

logger = logging.getLogger(__name__)


class TwitterSessionClient:
    """Owns one session: cookie jar, guest token, login state, request pipeline.

    Reuse one instance per account; every component shares the same jar.
    """

    def __init__(
        self,
        config: Settings | None = None,
        *,
        rate_limit_strategy: RateLimitStrategy | None = None,
        transform: FetchTransformOptions | None = None,
        http: HttpxClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or default_settings
        clock = clock or SystemClock()
        self.http = http or HttpxClient(timeout=self.config.http_timeout)
        self.session = SessionStore(self.http.jar, bearer_token=self.config.bearer_token)
        self.guest_tokens = GuestTokenManager(
            self.http,
            bearer_token=self.config.bearer_token,
            validity=timedelta(hours=self.config.guest_token_ttl_hours),
            clock=clock,
        )
        self.pipeline = RequestPipeline(
            self.http, rate_limit_strategy=rate_limit_strategy, transform=transform
        )
        self.registry = SubtaskHandlerRegistry()
        self.flow_engine = FlowEngine(
            self.pipeline,
            self.registry,
            self.session,
            max_steps=self.config.max_flow_steps,
            clock=clock,
        )
        self.guest_auth = GuestAuth(self.session, self.guest_tokens)
        self.user_auth = UserAuth(self.session, self.guest_tokens, self.pipeline, self.flow_engine)

    @property
    def auth(self) -> AuthenticatorPort:
        """The authenticator requests go through: user once logged in, guest before."""
        return self.user_auth if self.user_auth.is_authenticated() else self.guest_auth

    # ---------- Login ----------
    def register_auth_subtask_handler(self, subtask_id: str, handler: FlowSubtaskHandler) -> None:
        self.registry.register(subtask_id, handler)

    async def login(
        self,
        username: str,
        password: str,
        email: str | None = None,
        two_factor_secret: str | None = None,
    ) -> None:
        await self.user_auth.login(username, password, email, two_factor_secret)

    async def logout(self) -> None:
        await self.user_auth.logout()

    async def is_logged_in(self, verify: bool = False) -> bool:
        return await self.user_auth.is_logged_in(verify=verify)

    def has_guest_token(self) -> bool:
        return self.guest_auth.has_token()

    def use_rate_limit_strategy(self, strategy: RateLimitStrategy) -> None:
        self.pipeline.rate_limit_strategy = strategy

    # ---------- Cookies ----------
    def get_cookies(self) -> list[dict[str, Any]]:
        return self.session.export_cookies()

    def set_cookies(self, cookies: Iterable[CookieInput]) -> None:
        self.session.set_cookies(cookies)

    def clear_cookies(self) -> None:
        self.session.clear_cookies()

    # ---------- Requests ----------
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
        require_auth: bool = False,
    ) -> httpx.Response:
        if require_auth:
            self.user_auth.require_login()
        return await self.pipeline.request(
            method, url, auth=self.auth, params=params, json=json, headers=headers
        )

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
        require_auth: bool = False,
    ) -> Any:
        if require_auth:
            self.user_auth.require_login()
        return await self.pipeline.request_json(
            method, url, auth=self.auth, params=params, json=json, headers=headers
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> TwitterSessionClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
