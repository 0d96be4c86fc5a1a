from __future__ import annotations

from collections.abc import MutableMapping
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from twitter_session.infrastructure.auth.session_store import SessionStore


class AuthenticatorPort(Protocol):
    """Installs authentication headers into outgoing requests."""

    @property
    def session(self) -> SessionStore: ...

    async def install_to(self, headers: MutableMapping[str, str], url: str) -> None:
        """Sets auth headers for `url`, refreshing the guest token if stale."""
        ...

    def has_token(self) -> bool: ...

    def delete_token(self) -> None: ...

    def authenticated_at(self) -> datetime | None: ...


class UserAuthPort(AuthenticatorPort, Protocol):
    """Authenticator able to run the user login flow."""

    async def login(
        self,
        username: str,
        password: str,
        email: str | None = None,
        two_factor_secret: str | None = None,
    ) -> None: ...

    async def logout(self) -> None: ...

    async def is_logged_in(self, verify: bool = False) -> bool: ...
