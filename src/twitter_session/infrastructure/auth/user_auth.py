from __future__ import annotations

import logging
from collections.abc import MutableMapping
from datetime import datetime

import httpx

from twitter_session.application.ports.authenticator_port import UserAuthPort
from twitter_session.application.ports.subtask_handler_port import FlowSubtaskHandler
from twitter_session.domain.errors import ApiError, AuthenticationError, FlowError
from twitter_session.domain.model import Credentials
from twitter_session.infrastructure.auth.flow_engine import FlowEngine
from twitter_session.infrastructure.auth.guest_auth import GuestAuth
from twitter_session.infrastructure.auth.guest_token import GuestTokenManager
from twitter_session.infrastructure.auth.session_store import SessionStore
from twitter_session.infrastructure.request_pipeline import RequestPipeline

logger = logging.getLogger(__name__)

LOGOUT_URL = "https://api.x.com/1.1/account/logout.json"
VERIFY_CREDENTIALS_URL = "https://api.x.com/1.1/account/verify_credentials.json"
SESSION_URL = "https://x.com"
AUTH_COOKIE = "auth_token"


class UserAuth(GuestAuth, UserAuthPort):
    """Logged-in access; behaves like GuestAuth until login succeeds."""

    def __init__(
        self,
        session: SessionStore,
        guest_tokens: GuestTokenManager,
        pipeline: RequestPipeline,
        flow_engine: FlowEngine,
    ) -> None:
        super().__init__(session, guest_tokens)
        self.pipeline = pipeline
        self.flow_engine = flow_engine
        # The login flow always runs as a guest, whatever the session state
        self._flow_auth = GuestAuth(session, guest_tokens)

    def _log(self, msg: str) -> None:
        logger.info("[UserAuth] %s", msg)

    def register_subtask_handler(self, subtask_id: str, handler: FlowSubtaskHandler) -> None:
        self.flow_engine.registry.register(subtask_id, handler)

    def authenticated_at(self) -> datetime | None:
        return self.session.authenticated_at or super().authenticated_at()

    def is_authenticated(self) -> bool:
        """Logged in during this process, or restored cookies carry a session."""
        return (
            self.session.authenticated_at is not None
            or self.session.get_cookie(AUTH_COOKIE, SESSION_URL) is not None
        )

    def require_login(self) -> None:
        if not self.is_authenticated():
            raise AuthenticationError("This operation requires a logged-in session.")

    async def install_to(self, headers: MutableMapping[str, str], url: str) -> None:
        if not self.is_authenticated():
            await super().install_to(headers, url)
            return
        self.session.install_to(headers, url)
        headers["x-twitter-auth-type"] = "OAuth2Session"

    async def login(
        self,
        username: str,
        password: str,
        email: str | None = None,
        two_factor_secret: str | None = None,
    ) -> None:
        credentials = Credentials(
            username=username,
            password=password,
            email=email or None,
            two_factor_secret=two_factor_secret or None,
        )
        self._log(f"Starting login for {credentials.username}")
        self.session.forget_authentication()
        self.session.remove_cookie(AUTH_COOKIE)
        await self.guest_tokens.refresh()

        result = await self.flow_engine.run(credentials, self._flow_auth)
        if result.status == "error":
            err = result.err or FlowError("Login failed.")
            self._log(f"Login failed: {err}")
            raise err
        self._log("Login complete")

    async def logout(self) -> None:
        try:
            if await self.is_logged_in():
                await self.pipeline.request("POST", LOGOUT_URL, auth=self)
        except (ApiError, httpx.HTTPError) as e:
            logger.warning("Logout call failed, clearing local session anyway: %s", e)
        finally:
            self.delete_token()
            self.session.clear()
            self._log("Session cleared")

    async def is_logged_in(self, verify: bool = False) -> bool:
        if not (self.is_authenticated() and self._has_csrf_cookie()):
            return False
        if not verify:
            return True
        return await self.verify_credentials()

    async def verify_credentials(self) -> bool:
        """Asks the service whether the current cookies still authenticate."""
        try:
            body = await self.pipeline.request_json("GET", VERIFY_CREDENTIALS_URL, auth=self)
        except ApiError as e:
            self._log(f"verify_credentials rejected: status={e.status_code}")
            return False
        return isinstance(body, dict) and not body.get("errors")

    def _has_csrf_cookie(self) -> bool:
        return self.session.csrf_token(SESSION_URL) is not None
