"""Exception types for the session engine."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from twitter_session.domain.model import ApiErrorRaw

if TYPE_CHECKING:
    import httpx


class TwitterSessionError(Exception):
    """Base exception for all session engine errors."""


class AuthenticationError(TwitterSessionError):
    """An operation needing an authenticated session was attempted without one."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Authentication failed")


class GuestTokenError(TwitterSessionError):
    """Guest token activation failed or returned an unusable body."""

    def __init__(self, message: str, *, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.response = response


class FlowError(TwitterSessionError):
    """The login flow reported errors or reached a terminal error state."""


class UnhandledSubtaskError(FlowError):
    """No handler is registered for a step the server asked for."""

    def __init__(self, subtask_id: str) -> None:
        super().__init__(f"Unknown subtask {subtask_id}")
        self.subtask_id = subtask_id


class StaleFlowTokenError(FlowError):
    """A subtask request carried a flow token other than the latest one."""


class ApiError(TwitterSessionError):
    """Non-2xx response from the service, with its parsed body."""

    def __init__(self, response: httpx.Response, data: Any) -> None:
        self.response = response
        self.data = data
        super().__init__(
            f"Response status: {response.status_code} | url: {_request_url(response)} "
            f"| data: {_preview(data)}"
        )

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def errors(self) -> list[ApiErrorRaw]:
        if isinstance(self.data, dict) and isinstance(self.data.get("errors"), list):
            return [ApiErrorRaw.from_json(e) for e in self.data["errors"] if isinstance(e, dict)]
        return []

    @classmethod
    def from_response(cls, response: httpx.Response) -> ApiError:
        # Best effort: JSON when the body parses, raw text otherwise
        data: Any
        try:
            if "application/json" in response.headers.get("content-type", ""):
                data = response.json()
            else:
                data = response.text
        except (ValueError, UnicodeDecodeError):
            data = response.text
        return cls(response, data)


class RateLimitExceededError(ApiError):
    """Still throttled (HTTP 429) after the rate-limit strategy ran."""


def _preview(data: Any, limit: int = 500) -> str:
    if isinstance(data, str):
        text = data
    else:
        try:
            text = json.dumps(data)
        except (TypeError, ValueError):
            text = repr(data)
    return text[:limit]


def _request_url(response: httpx.Response) -> str:
    try:
        return str(response.request.url)
    except RuntimeError:
        # Response built without a request (tests, transforms)
        return "-"
