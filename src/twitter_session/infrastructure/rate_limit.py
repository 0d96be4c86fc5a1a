"""Built-in strategies for HTTP 429 responses.

Any object with an ``async on_rate_limit(event)`` method can be used instead,
e.g. one that only logs the event::

    class LoggingRateLimitStrategy:
        async def on_rate_limit(self, event: RateLimitEvent) -> None:
            logger.warning("throttled: %s", event.request.url)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from twitter_session.application.ports.clock_port import Clock, SystemClock
from twitter_session.application.ports.rate_limit_port import RateLimitStrategy
from twitter_session.domain.errors import ApiError
from twitter_session.domain.model import RateLimitEvent

logger = logging.getLogger(__name__)

RATE_LIMIT_RESET_HEADER = "x-rate-limit-reset"
RATE_LIMIT_REMAINING_HEADER = "x-rate-limit-remaining"

Sleep = Callable[[float], Awaitable[None]]


class WaitingRateLimitStrategy(RateLimitStrategy):
    """Waits until the current rate-limit window resets.

    The reset header holds a UNIX timestamp in seconds. Waits of more than ten
    minutes have been observed.
    """

    def __init__(self, *, clock: Clock | None = None, sleep: Sleep = asyncio.sleep) -> None:
        self.clock = clock or SystemClock()
        self.sleep = sleep

    def delay_for(self, event: RateLimitEvent) -> float:
        raw = event.response.headers.get(RATE_LIMIT_RESET_HEADER)
        if not raw:
            return 0.0
        try:
            reset_at = float(raw)
        except ValueError:
            logger.warning("Unparseable %s header: %r", RATE_LIMIT_RESET_HEADER, raw)
            return 0.0
        return max(0.0, reset_at - self.clock.now().timestamp())

    async def on_rate_limit(self, event: RateLimitEvent) -> None:
        delay = self.delay_for(event)
        logger.info(
            "Rate limited on %s (remaining=%s), waiting %.1fs",
            event.request.url,
            event.response.headers.get(RATE_LIMIT_REMAINING_HEADER, "?"),
            delay,
        )
        if delay > 0:
            await self.sleep(delay)


class ErrorRateLimitStrategy(RateLimitStrategy):
    """Raises an ApiError as soon as the service throttles a request."""

    async def on_rate_limit(self, event: RateLimitEvent) -> None:
        raise ApiError.from_response(event.response)
