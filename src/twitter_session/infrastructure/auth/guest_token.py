from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from twitter_session.application.ports.clock_port import Clock, SystemClock
from twitter_session.application.ports.http_client_port import HttpClientPort
from twitter_session.domain.errors import GuestTokenError
from twitter_session.domain.model import GuestToken

logger = logging.getLogger(__name__)

GUEST_ACTIVATE_URL = "https://api.x.com/1.1/guest/activate.json"
GUEST_TOKEN_VALIDITY = timedelta(hours=3)


class GuestTokenManager:
    """Obtains and refreshes the anonymous guest token.

    Refreshes are single-flight: concurrent callers that find the token stale
    wait on one activation call and share its result.
    """

    def __init__(
        self,
        http: HttpClientPort,
        *,
        bearer_token: str,
        validity: timedelta = GUEST_TOKEN_VALIDITY,
        activate_url: str = GUEST_ACTIVATE_URL,
        clock: Clock | None = None,
    ) -> None:
        self.http = http
        self.bearer_token = bearer_token
        self.validity = validity
        self.activate_url = activate_url
        self.clock = clock or SystemClock()
        self._token: GuestToken | None = None
        self._lock = asyncio.Lock()

    def _log(self, msg: str) -> None:
        logger.debug("[GuestTokenManager] %s", msg)

    @property
    def token(self) -> GuestToken | None:
        return self._token

    def is_stale(self) -> bool:
        return self._fresh_token() is None

    def _fresh_token(self) -> GuestToken | None:
        token = self._token
        if token is None or token.is_stale(self.clock.now(), self.validity):
            return None
        return token

    async def ensure_fresh(self) -> GuestToken:
        token = self._fresh_token()
        if token is not None:
            return token
        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._fresh_token()
            if token is not None:
                return token
            return await self._activate()

    async def refresh(self) -> GuestToken:
        """Forces a new activation call regardless of staleness."""
        async with self._lock:
            return await self._activate()

    def invalidate(self) -> None:
        if self._token is not None:
            self._log("invalidating guest token")
        self._token = None

    async def _activate(self) -> GuestToken:
        request = self.http.build_request(
            "POST",
            self.activate_url,
            headers={"authorization": f"Bearer {self.bearer_token}"},
        )
        resp = await self.http.send(request)
        if not resp.is_success:
            raise GuestTokenError(
                f"Guest activation failed with status {resp.status_code}: {resp.text[:200]}",
                response=resp,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise GuestTokenError("Guest activation returned a non-JSON body.", response=resp) from e
        if not isinstance(body, dict) or body.get("guest_token") is None:
            raise GuestTokenError("guest_token not found.", response=resp)
        value = body["guest_token"]
        if not isinstance(value, str):
            raise GuestTokenError("guest_token was not a string.", response=resp)

        self._token = GuestToken(value=value, created_at=self.clock.now())
        self._log(f"activated guest token {value[:4]}... at {self._token.created_at.isoformat()}")
        return self._token
