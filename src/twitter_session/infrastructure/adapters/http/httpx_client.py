from __future__ import annotations

import logging
from collections.abc import Mapping
from http.cookiejar import CookieJar
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from twitter_session.application.ports.http_client_port import HttpClientPort

logger = logging.getLogger(__name__)

IDEMPOTENT_METHODS = {"GET", "HEAD"}

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36"
)


class HttpTemporaryError(Exception):
    pass


class HttpxClient(HttpClientPort):
    def __init__(
        self,
        jar: CookieJar | None = None,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """HTTP client adapter backed by a persistent httpx.AsyncClient.

        - Shares `jar` with the session by reference; httpx reads request cookies
          from it and stores Set-Cookie headers into it
        - Retries GET/HEAD on transport errors and 5xx; never retries other methods

        Args:
            jar (CookieJar | None, optional): Cookie jar owned by the session. Defaults to a new jar.
            timeout (float, optional): Timeout for requests. Defaults to 30.0.
            max_attempts (int, optional): Attempts for idempotent requests. Defaults to 3.
            transport (httpx.AsyncBaseTransport | None, optional): Custom transport (proxies, tests).
        """
        self._jar = jar if jar is not None else CookieJar()
        self._max_attempts = max_attempts
        self._client = httpx.AsyncClient(
            timeout=timeout,
            cookies=self._jar,
            headers={
                "Accept": "*/*",
                "Accept-Language": "en-US,en;q=0.9",
                "User-Agent": DEFAULT_USER_AGENT,
            },
            follow_redirects=True,
            transport=transport,
        )

    @property
    def jar(self) -> CookieJar:
        return self._jar

    def build_request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Request:
        """Builds a request carrying the jar's cookies for `url`.

        Args:
            method (str): HTTP method.
            url (str): Target URL.
            params (Mapping[str, Any] | None, optional): Query parameters.
            json (Any | None, optional): JSON body.
            headers (Mapping[str, str] | None, optional): Headers to include.

        Returns:
            httpx.Request: Request ready to be sent with `send`.
        """
        return self._client.build_request(
            method.upper(), url, params=params, json=json, headers=headers
        )

    async def send(self, request: httpx.Request) -> httpx.Response:
        """Sends the given request.

        Args:
            request (httpx.Request): Request built by `build_request`.

        Returns:
            httpx.Response: Response from the server, body already read.
        """
        if request.method not in IDEMPOTENT_METHODS:
            return await self._send_once(request, retryable=False)

        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential_jitter(initial=1, max=8),
            retry=retry_if_exception_type(HttpTemporaryError),
        ):
            with attempt:
                last = attempt.retry_state.attempt_number >= self._max_attempts
                return await self._send_once(request, retryable=not last)
        raise RuntimeError("Retry exhausted")

    async def _send_once(self, request: httpx.Request, *, retryable: bool) -> httpx.Response:
        logger.debug("%s %s | cookies: %s", request.method, request.url, self._cookie_names())
        try:
            resp = await self._client.send(request)
        except httpx.TransportError as e:
            if retryable:
                raise HttpTemporaryError(str(e)) from e
            raise
        if retryable and resp.status_code >= 500:
            await resp.aclose()
            raise HttpTemporaryError(f"{request.method} {request.url} -> {resp.status_code}")
        logger.debug("%s %s -> %s", request.method, request.url, resp.status_code)
        return resp

    def _cookie_names(self) -> list[str]:
        return sorted({c.name for c in self._jar})

    async def aclose(self) -> None:
        await self._client.aclose()
