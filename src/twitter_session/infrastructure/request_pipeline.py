from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from twitter_session.application.ports.authenticator_port import AuthenticatorPort
from twitter_session.application.ports.http_client_port import HttpClientPort
from twitter_session.application.ports.rate_limit_port import RateLimitStrategy
from twitter_session.domain.errors import ApiError, RateLimitExceededError
from twitter_session.domain.model import RateLimitEvent
from twitter_session.infrastructure.rate_limit import WaitingRateLimitStrategy

logger = logging.getLogger(__name__)

# Initial attempt plus one retry after the rate-limit strategy returns
MAX_ATTEMPTS = 2
BAD_GUEST_TOKEN_CODE = 239

_T = TypeVar("_T")


@dataclass(frozen=True)
class FetchTransformOptions:
    """Caller hooks, e.g. to route requests through a proxy host.

    `request` runs after authentication headers are installed and may return
    a new request. `response` runs on 2xx/3xx responses and may return a new
    response. Both may be sync or async.
    """

    request: Callable[[httpx.Request], httpx.Request | Awaitable[httpx.Request]] | None = None
    response: Callable[[httpx.Response], httpx.Response | Awaitable[httpx.Response]] | None = None


class RequestPipeline:
    def __init__(
        self,
        http: HttpClientPort,
        *,
        rate_limit_strategy: RateLimitStrategy | None = None,
        transform: FetchTransformOptions | None = None,
    ) -> None:
        self.http = http
        self.rate_limit_strategy = rate_limit_strategy or WaitingRateLimitStrategy()
        self.transform = transform or FetchTransformOptions()

    async def request(
        self,
        method: str,
        url: str,
        *,
        auth: AuthenticatorPort,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Sends an authenticated request and returns the raw response.

        Raises:
            RateLimitExceededError: still throttled after the strategy ran.
            ApiError: any other non-2xx/3xx status.
            httpx.HTTPError: transport failures.
        """
        logger.debug("Making %s request to %s", method, url)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            # Rebuilt each attempt so cookies set meanwhile are picked up
            request = self.http.build_request(method, url, params=params, json=json, headers=headers)
            await auth.install_to(request.headers, str(request.url))
            if self.transform.request is not None:
                request = await _resolve(self.transform.request(request))

            response = await self.http.send(request)
            self._check_guest_token(response, auth)

            if response.status_code == 429:
                if attempt == MAX_ATTEMPTS:
                    raise RateLimitExceededError.from_response(response)
                logger.info("Rate limit hit on %s, invoking strategy", url)
                await self.rate_limit_strategy.on_rate_limit(
                    RateLimitEvent(request=request, response=response)
                )
                continue

            if not (response.is_success or response.is_redirect):
                raise ApiError.from_response(response)

            if self.transform.response is not None:
                response = await _resolve(self.transform.response(response))
            return response

        raise RuntimeError("unreachable: rate-limit loop exited without a response")

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        auth: AuthenticatorPort,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        response = await self.request(
            method, url, auth=auth, params=params, json=json, headers=headers
        )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.debug("Failed to parse response as JSON: %s", response.text[:200])
            raise ApiError(response, response.text) from e

    def _check_guest_token(self, response: httpx.Response, auth: AuthenticatorPort) -> None:
        if response.headers.get("x-rate-limit-incoming") == "0":
            auth.delete_token()
            return
        if response.status_code in (401, 403):
            err = ApiError.from_response(response)
            if any(e.code == BAD_GUEST_TOKEN_CODE for e in err.errors):
                logger.info("Service rejected the guest token, dropping it")
                auth.delete_token()


async def _resolve(value: _T | Awaitable[_T]) -> _T:
    if inspect.isawaitable(value):
        return await value
    return value
