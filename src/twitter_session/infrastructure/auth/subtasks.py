"""Handlers for the login flow's server-defined steps ("subtasks").

The server decides which steps to ask for and in what order; the registry
maps each step id to a handler. Unknown ids are reported as an error result,
never skipped, since skipping would break the flow-token chain.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import pyotp

from twitter_session.application.ports.subtask_handler_port import (
    FlowSubtaskHandler,
    FlowSubtaskHandlerApi,
)
from twitter_session.domain.errors import FlowError, UnhandledSubtaskError
from twitter_session.domain.model import (
    Credentials,
    FlowResponse,
    FlowSubtaskRequest,
    FlowTokenResult,
)

logger = logging.getLogger(__name__)

JS_INSTRUMENTATION = "LoginJsInstrumentationSubtask"
ENTER_USER_IDENTIFIER = "LoginEnterUserIdentifierSSO"
ENTER_ALTERNATE_IDENTIFIER = "LoginEnterAlternateIdentifierSubtask"
ENTER_PASSWORD = "LoginEnterPassword"
ACCOUNT_DUPLICATION_CHECK = "AccountDuplicationCheck"
TWO_FACTOR_CHALLENGE = "LoginTwoFactorAuthChallenge"
LOGIN_ACID = "LoginAcid"
LOGIN_SUCCESS = "LoginSuccessSubtask"
DENY_LOGIN = "DenyLoginSubtask"


async def _submit(
    api: FlowSubtaskHandlerApi, subtask_id: str, field: str, value: dict[str, Any]
) -> FlowTokenResult:
    return await api.send_flow_request(
        FlowSubtaskRequest(
            flow_token=api.get_flow_token(),
            subtask_inputs=[{"subtask_id": subtask_id, field: value}],
        )
    )


# =========================
# Built-in handlers
# =========================
async def handle_js_instrumentation(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return await _submit(
        api, subtask_id, "js_instrumentation", {"response": "{}", "link": "next_link"}
    )


async def handle_user_identifier(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return await _submit(
        api,
        subtask_id,
        "settings_list",
        {
            "setting_responses": [
                {
                    "key": "user_identifier",
                    "response_data": {"text_data": {"result": credentials.username}},
                }
            ],
            "link": "next_link",
        },
    )


async def handle_alternate_identifier(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    # Asked when the service wants a second identifier (email or handle)
    text = credentials.email or credentials.username
    return await _submit(api, subtask_id, "enter_text", {"text": text, "link": "next_link"})


async def handle_password(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return await _submit(
        api, subtask_id, "enter_password", {"password": credentials.password, "link": "next_link"}
    )


async def handle_account_duplication_check(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return await _submit(
        api, subtask_id, "check_logged_in_account", {"link": "AccountDuplicationCheck_false"}
    )


async def handle_acid(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    if not credentials.email:
        return FlowTokenResult.failure(
            FlowError("Email confirmation is required but no email was provided")
        )
    return await _submit(
        api, subtask_id, "enter_text", {"text": credentials.email, "link": "next_link"}
    )


async def handle_success(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return FlowTokenResult.success(previous.completed())


async def handle_deny_login(
    subtask_id: str, previous: FlowResponse, credentials: Credentials, api: FlowSubtaskHandlerApi
) -> FlowTokenResult:
    return FlowTokenResult.failure(FlowError(f"Authentication error: {subtask_id}"))


class TwoFactorChallengeHandler:
    """Answers the TOTP challenge from the shared secret, retrying bad codes."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep

    async def __call__(
        self,
        subtask_id: str,
        previous: FlowResponse,
        credentials: Credentials,
        api: FlowSubtaskHandlerApi,
    ) -> FlowTokenResult:
        if not credentials.two_factor_secret:
            return FlowTokenResult.failure(
                FlowError("Two-factor authentication is required but no secret was provided")
            )
        result = FlowTokenResult.failure(FlowError("Two-factor authentication was not attempted"))
        for attempt in range(1, self.max_attempts + 1):
            try:
                code = pyotp.TOTP(credentials.two_factor_secret).now()
            except ValueError as e:
                # binascii.Error for secrets that are not base32
                return FlowTokenResult.failure(FlowError(f"Invalid two-factor secret: {e}"))
            result = await _submit(
                api, subtask_id, "enter_text", {"text": code, "link": "next_link"}
            )
            if result.status == "success":
                return result
            logger.info("2FA attempt %s/%s failed: %s", attempt, self.max_attempts, result.err)
            if attempt < self.max_attempts:
                await self.sleep(self.retry_delay * attempt)
        return result


def default_handlers() -> dict[str, FlowSubtaskHandler]:
    return {
        JS_INSTRUMENTATION: handle_js_instrumentation,
        ENTER_USER_IDENTIFIER: handle_user_identifier,
        ENTER_ALTERNATE_IDENTIFIER: handle_alternate_identifier,
        ENTER_PASSWORD: handle_password,
        ACCOUNT_DUPLICATION_CHECK: handle_account_duplication_check,
        TWO_FACTOR_CHALLENGE: TwoFactorChallengeHandler(),
        LOGIN_ACID: handle_acid,
        LOGIN_SUCCESS: handle_success,
        DENY_LOGIN: handle_deny_login,
    }


# =========================
# Registry
# =========================
class SubtaskHandlerRegistry:
    def __init__(
        self,
        handlers: Mapping[str, FlowSubtaskHandler] | None = None,
        *,
        include_defaults: bool = True,
    ) -> None:
        self._handlers: dict[str, FlowSubtaskHandler] = default_handlers() if include_defaults else {}
        if handlers:
            self._handlers.update(handlers)

    def register(self, subtask_id: str, handler: FlowSubtaskHandler) -> None:
        """Registers `handler` for `subtask_id`, replacing any existing one."""
        self._handlers[subtask_id] = handler

    def get(self, subtask_id: str) -> FlowSubtaskHandler | None:
        return self._handlers.get(subtask_id)

    def __contains__(self, subtask_id: object) -> bool:
        return subtask_id in self._handlers

    def ids(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(
        self,
        subtask_id: str,
        previous: FlowResponse,
        credentials: Credentials,
        api: FlowSubtaskHandlerApi,
    ) -> FlowTokenResult:
        handler = self._handlers.get(subtask_id)
        if handler is None:
            logger.warning("No handler registered for subtask %s", subtask_id)
            return FlowTokenResult.failure(UnhandledSubtaskError(subtask_id))
        logger.debug("Dispatching subtask %s", subtask_id)
        return await handler(subtask_id, previous, credentials, api)
