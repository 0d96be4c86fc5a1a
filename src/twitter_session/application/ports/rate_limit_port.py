from __future__ import annotations

from typing import Protocol

from twitter_session.domain.model import RateLimitEvent


class RateLimitStrategy(Protocol):
    """Policy run when the service answers HTTP 429.

    Returning normally lets the pipeline retry the request once; raising
    aborts the call with that exception.
    """

    async def on_rate_limit(self, event: RateLimitEvent) -> None: ...
