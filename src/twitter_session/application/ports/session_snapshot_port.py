from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

CookieRecord = dict[str, Any]


class SessionSnapshotStorePort(Protocol):
    """Abstract persistence for exported session cookies and metadata."""

    def load(self) -> tuple[list[CookieRecord], datetime | None, bool]:
        """
        Returns:
            cookies: exported cookie records (see SessionStore.export_cookies)
            expires_at: when the snapshot should be considered expired (UTC) or None
            is_active: flag indicating a previously valid session
        """
        ...

    def save(self, cookies: list[CookieRecord], expires_at: datetime) -> None:
        """Persist cookies and expiry, marking the snapshot active."""
        ...

    def mark_inactive(self) -> None:
        """Mark the stored snapshot as inactive (e.g., after a rejected restore)."""
        ...
