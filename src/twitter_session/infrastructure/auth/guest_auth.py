from __future__ import annotations

from collections.abc import MutableMapping
from datetime import datetime

from twitter_session.application.ports.authenticator_port import AuthenticatorPort
from twitter_session.domain.errors import AuthenticationError
from twitter_session.infrastructure.auth.guest_token import GuestTokenManager
from twitter_session.infrastructure.auth.session_store import SessionStore


class GuestAuth(AuthenticatorPort):
    """Anonymous access: bearer + guest token + CSRF when the cookie exists."""

    def __init__(self, session: SessionStore, guest_tokens: GuestTokenManager) -> None:
        self._session = session
        self.guest_tokens = guest_tokens

    @property
    def session(self) -> SessionStore:
        return self._session

    def has_token(self) -> bool:
        return self.guest_tokens.token is not None

    def delete_token(self) -> None:
        self.guest_tokens.invalidate()

    def authenticated_at(self) -> datetime | None:
        token = self.guest_tokens.token
        return token.created_at if token is not None else None

    async def install_to(self, headers: MutableMapping[str, str], url: str) -> None:
        token = await self.guest_tokens.ensure_fresh()
        if not token.value:
            raise AuthenticationError("Authentication token is null or empty.")
        self._session.install_to(headers, url, guest_token=token.value)
