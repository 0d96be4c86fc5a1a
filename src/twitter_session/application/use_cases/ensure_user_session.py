from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx

from twitter_session.application.ports.authenticator_port import UserAuthPort
from twitter_session.application.ports.clock_port import Clock, SystemClock
from twitter_session.application.ports.session_snapshot_port import SessionSnapshotStorePort
from twitter_session.domain.errors import TwitterSessionError
from twitter_session.domain.model import Credentials

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnsureSessionResult:
    status: str  # "ALREADY_ACTIVE" | "REFRESHED" | "ERROR"
    expires_at: datetime | None
    message: str


class EnsureUserSessionUseCase:
    """Restores a saved session when still valid, otherwise logs in and saves it."""

    def __init__(
        self,
        store: SessionSnapshotStorePort,
        auth: UserAuthPort,
        credentials: Credentials,
        *,
        ttl_hours: int = 24,
        verify: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self.store = store
        self.auth = auth
        self.credentials = credentials
        self.ttl = timedelta(hours=ttl_hours)
        self.verify = verify
        self.clock = clock or SystemClock()

    async def execute(self) -> EnsureSessionResult:
        cookies, expires_at, is_active = self.store.load()
        now = self.clock.now()
        snapshot_usable = cookies and expires_at and expires_at > now and is_active
        if snapshot_usable:
            try:
                self.auth.session.set_cookies(cookies)
                if await self.auth.is_logged_in(verify=self.verify):
                    return EnsureSessionResult(
                        "ALREADY_ACTIVE", expires_at, "Valid session restored from store"
                    )
            except (TwitterSessionError, httpx.HTTPError, ValueError) as e:
                logger.info("Stored session unusable, logging in again: %s", e)
            self.auth.session.clear_cookies()

        try:
            logger.info("Fresh login for %s", self.credentials.username)
            await self.auth.login(
                self.credentials.username,
                self.credentials.password,
                self.credentials.email,
                self.credentials.two_factor_secret,
            )
        except (TwitterSessionError, httpx.HTTPError) as e:
            self.store.mark_inactive()
            return EnsureSessionResult("ERROR", None, f"Login failed: {e}")

        new_exp = now + self.ttl
        self.store.save(self.auth.session.export_cookies(), new_exp)
        return EnsureSessionResult("REFRESHED", new_exp, "Session refreshed via login flow")
