"""Cookie jar, CSRF token and authentication timestamp for one session.

The jar is handed to the HTTP client by reference (see `HttpxClient`), so
every Set-Cookie the service sends lands here and every request reads from
here. Nothing in the engine copies it.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Iterable, Mapping, MutableMapping
from datetime import datetime
from email.utils import parsedate_to_datetime
from http.cookiejar import Cookie, CookieJar
from http.cookies import CookieError, Morsel, SimpleCookie
from typing import Any
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)

CSRF_COOKIE = "ct0"
DEFAULT_COOKIE_DOMAIN = ".x.com"

CookieInput = str | Cookie | Mapping[str, Any]


class UserIdCache:
    """Screen name to user id, bounded; least recently used entries go first."""

    def __init__(self, maxsize: int = 1000) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be positive")
        self.maxsize = maxsize
        self._data: OrderedDict[str, str] = OrderedDict()

    def get(self, screen_name: str) -> str | None:
        key = screen_name.lower()
        user_id = self._data.get(key)
        if user_id is not None:
            self._data.move_to_end(key)
        return user_id

    def put(self, screen_name: str, user_id: str) -> None:
        key = screen_name.lower()
        self._data[key] = user_id
        self._data.move_to_end(key)
        while len(self._data) > self.maxsize:
            self._data.popitem(last=False)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class SessionStore:
    def __init__(
        self,
        jar: CookieJar | None = None,
        *,
        bearer_token: str,
        default_domain: str = DEFAULT_COOKIE_DOMAIN,
        user_id_cache_size: int = 1000,
    ) -> None:
        self._jar = jar if jar is not None else CookieJar()
        self.bearer_token = bearer_token
        self.default_domain = default_domain
        self._authenticated_at: datetime | None = None
        self.user_ids = UserIdCache(user_id_cache_size)

    # ---------- Cookies ----------
    @property
    def jar(self) -> CookieJar:
        return self._jar

    @property
    def cookies(self) -> httpx.Cookies:
        """httpx view over the same jar (not a copy)."""
        return httpx.Cookies(self._jar)

    def set_cookies(self, cookies: Iterable[CookieInput]) -> None:
        for item in cookies:
            for cookie in self._to_cookies(item):
                self._jar.set_cookie(cookie)
        logger.debug("set_cookies -> now: %s", sorted({c.name for c in self._jar}))

    def clear_cookies(self) -> None:
        self._jar.clear()

    def remove_cookie(self, name: str) -> None:
        """Drops every cookie called `name`, whatever its domain."""
        for c in [c for c in self._jar if c.name == name]:
            self._jar.clear(c.domain, c.path, c.name)

    def export_cookies(self) -> list[dict[str, Any]]:
        return [
            {
                "name": c.name,
                "value": c.value,
                "domain": c.domain,
                "path": c.path,
                "secure": c.secure,
                "expires": c.expires,
            }
            for c in self._jar
        ]

    def cookie_strings(self) -> list[str]:
        out = []
        for c in self._jar:
            parts = [f"{c.name}={c.value}", f"Domain={c.domain}", f"Path={c.path}"]
            if c.expires is not None:
                parts.append(f"Max-Age={max(0, int(c.expires - time.time()))}")
            if c.secure:
                parts.append("Secure")
            out.append("; ".join(parts))
        return out

    def get_cookie(self, name: str, url: str) -> str | None:
        host = urlsplit(url).hostname or ""
        now = time.time()
        best: Cookie | None = None
        for c in self._jar:
            if c.name != name or c.is_expired(now) or not _domain_matches(c.domain, host):
                continue
            # Most specific domain wins
            if best is None or len(c.domain.lstrip(".")) > len(best.domain.lstrip(".")):
                best = c
        return best.value if best is not None else None

    def csrf_token(self, url: str) -> str | None:
        # Read on every access; the service rotates ct0 during a session
        return self.get_cookie(CSRF_COOKIE, url)

    # ---------- Auth state ----------
    @property
    def authenticated_at(self) -> datetime | None:
        return self._authenticated_at

    def mark_authenticated(self, when: datetime) -> None:
        self._authenticated_at = when

    def forget_authentication(self) -> None:
        self._authenticated_at = None

    def clear(self) -> None:
        """Forget everything: cookies, auth timestamp, cached lookups."""
        self.clear_cookies()
        self._authenticated_at = None
        self.user_ids.clear()

    def install_to(
        self,
        headers: MutableMapping[str, str],
        url: str,
        *,
        guest_token: str | None = None,
    ) -> None:
        headers["authorization"] = f"Bearer {self.bearer_token}"
        if guest_token is not None:
            headers["x-guest-token"] = guest_token
        csrf = self.csrf_token(url)
        if csrf:
            headers["x-csrf-token"] = csrf

    # ---------- Helpers ----------
    def _to_cookies(self, item: CookieInput) -> list[Cookie]:
        if isinstance(item, Cookie):
            return [item]
        if isinstance(item, str):
            return self._parse_cookie_string(item)
        if isinstance(item, Mapping):
            return [
                make_cookie(
                    str(item["name"]),
                    str(item["value"]),
                    domain=item.get("domain") or self.default_domain,
                    path=item.get("path") or "/",
                    secure=bool(item.get("secure", False)),
                    expires=item.get("expires"),
                )
            ]
        raise TypeError(f"Unsupported cookie type: {type(item).__name__}")

    def _parse_cookie_string(self, text: str) -> list[Cookie]:
        parsed: SimpleCookie = SimpleCookie()
        try:
            parsed.load(text)
        except CookieError as e:
            raise ValueError(f"Could not parse cookie: {text[:100]}") from e
        if not parsed:
            raise ValueError(f"Could not parse cookie: {text[:100]}")
        out = []
        for name, morsel in parsed.items():
            expires = _expiry(morsel)
            out.append(
                make_cookie(
                    name,
                    morsel.value,
                    domain=morsel["domain"] or self.default_domain,
                    path=morsel["path"] or "/",
                    secure=bool(morsel["secure"]),
                    expires=expires,
                )
            )
        return out


def make_cookie(
    name: str,
    value: str,
    *,
    domain: str = DEFAULT_COOKIE_DOMAIN,
    path: str = "/",
    secure: bool = False,
    expires: int | float | None = None,
) -> Cookie:
    return Cookie(
        version=0,
        name=name,
        value=value,
        port=None,
        port_specified=False,
        domain=domain,
        domain_specified=True,
        domain_initial_dot=domain.startswith("."),
        path=path,
        path_specified=True,
        secure=secure,
        expires=int(expires) if expires is not None else None,
        discard=expires is None,
        comment=None,
        comment_url=None,
        rest={},
    )


def _expiry(morsel: Morsel) -> int | None:
    # Max-Age wins over Expires when both are present
    if morsel["max-age"]:
        return int(time.time()) + int(morsel["max-age"])
    if morsel["expires"]:
        try:
            return int(parsedate_to_datetime(morsel["expires"]).timestamp())
        except (TypeError, ValueError):
            logger.warning("Ignoring unparseable cookie expiry: %r", morsel["expires"])
    return None


def _domain_matches(cookie_domain: str, host: str) -> bool:
    domain = cookie_domain.lstrip(".").lower()
    host = host.lower()
    return host == domain or host.endswith("." + domain)
