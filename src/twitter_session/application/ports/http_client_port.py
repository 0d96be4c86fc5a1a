from __future__ import annotations

from collections.abc import Mapping
from http.cookiejar import CookieJar
from typing import Any, Protocol

import httpx


class HttpClientPort(Protocol):
    """Async HTTP transport sharing the session's cookie jar by reference."""

    @property
    def jar(self) -> CookieJar: ...

    def build_request(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Request: ...

    async def send(self, request: httpx.Request) -> httpx.Response: ...

    async def aclose(self) -> None: ...
