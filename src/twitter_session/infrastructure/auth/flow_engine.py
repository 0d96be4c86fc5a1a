"""Drives the multi-step login flow.

Each response either ends the flow (errors, or no pending steps) or names the
next step; the first pending step is dispatched to the registry and its result
becomes the next response. Failures are returned as `FlowTokenResult` values
so the loop can stop cleanly; only transport errors propagate.
"""

from __future__ import annotations

import logging
from typing import Any

from twitter_session.application.ports.authenticator_port import AuthenticatorPort
from twitter_session.application.ports.clock_port import Clock, SystemClock
from twitter_session.application.ports.subtask_handler_port import FlowSubtaskHandlerApi
from twitter_session.domain.errors import ApiError, FlowError, StaleFlowTokenError
from twitter_session.domain.model import (
    Credentials,
    FlowInitRequest,
    FlowRequest,
    FlowResponse,
    FlowSubtaskRequest,
    FlowTokenResult,
)
from twitter_session.infrastructure.auth.session_store import SessionStore
from twitter_session.infrastructure.auth.subtasks import SubtaskHandlerRegistry
from twitter_session.infrastructure.request_pipeline import RequestPipeline

logger = logging.getLogger(__name__)

FLOW_URL = "https://api.x.com/1.1/onboarding/task.json"
DEFAULT_MAX_STEPS = 32

FLOW_HEADERS = {
    "content-type": "application/json",
    "x-twitter-auth-type": "OAuth2Client",
    "x-twitter-active-user": "yes",
    "x-twitter-client-language": "en",
}

LOGIN_INPUT_FLOW_DATA: dict[str, Any] = {
    "flow_context": {
        "debug_overrides": {},
        "start_location": {"location": "manual_link"},
    },
}

DEFAULT_SUBTASK_VERSIONS: dict[str, int] = {
    "action_list": 2,
    "alert_dialog": 1,
    "app_download_cta": 1,
    "check_logged_in_account": 1,
    "choice_selection": 3,
    "contacts_live_sync_permission_prompt": 0,
    "cta": 7,
    "email_verification": 2,
    "end_flow": 1,
    "enter_date": 1,
    "enter_email": 2,
    "enter_password": 5,
    "enter_phone": 2,
    "enter_recaptcha": 1,
    "enter_text": 5,
    "enter_username": 2,
    "generic_urt": 3,
    "in_app_notification": 1,
    "interest_picker": 3,
    "js_instrumentation": 1,
    "menu_dialog": 1,
    "notifications_permission_prompt": 2,
    "open_account": 2,
    "open_home_timeline": 1,
    "open_link": 1,
    "phone_verification": 4,
    "privacy_options": 1,
    "security_key": 3,
    "select_avatar": 4,
    "select_banner": 2,
    "settings_list": 7,
    "show_code": 1,
    "sign_up": 2,
    "sign_up_review": 4,
    "tweet_selection_urt": 1,
    "update_users": 1,
    "upload_media": 1,
    "user_recommendations_list": 4,
    "user_recommendations_urt": 1,
    "wait_spinner": 3,
    "web_modal": 1,
}


class FlowRun(FlowSubtaskHandlerApi):
    """One login attempt. Tracks the latest flow token; handed to handlers."""

    def __init__(self, engine: FlowEngine, auth: AuthenticatorPort) -> None:
        self._engine = engine
        self._auth = auth
        self._flow_token: str | None = None
        self.requests_sent = 0

    def get_flow_token(self) -> str:
        if self._flow_token is None:
            raise FlowError("No flow token yet; the flow has not been initialised")
        return self._flow_token

    async def send_flow_request(self, request: FlowRequest) -> FlowTokenResult:
        if isinstance(request, FlowSubtaskRequest) and request.flow_token != self._flow_token:
            raise StaleFlowTokenError(
                "Subtask request does not carry the flow token of the latest response"
            )
        self.requests_sent += 1
        result = await self._engine.send(request, self._auth)
        if result.status == "success" and result.response is not None:
            self._flow_token = result.response.flow_token
        return result


class FlowEngine:
    def __init__(
        self,
        pipeline: RequestPipeline,
        registry: SubtaskHandlerRegistry,
        session: SessionStore,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        clock: Clock | None = None,
        flow_name: str = "login",
        input_flow_data: dict[str, Any] | None = None,
        subtask_versions: dict[str, int] | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.registry = registry
        self.session = session
        self.max_steps = max_steps
        self.clock = clock or SystemClock()
        self.flow_name = flow_name
        self.input_flow_data = input_flow_data or LOGIN_INPUT_FLOW_DATA
        self.subtask_versions = subtask_versions or DEFAULT_SUBTASK_VERSIONS

    def init_request(self) -> FlowInitRequest:
        return FlowInitRequest(
            flow_name=self.flow_name,
            input_flow_data=self.input_flow_data,
            subtask_versions=self.subtask_versions,
        )

    async def run(self, credentials: Credentials, auth: AuthenticatorPort) -> FlowTokenResult:
        flow = FlowRun(self, auth)
        result = await flow.send_flow_request(self.init_request())

        steps = 0
        while result.status == "success":
            response = result.response
            if response is None:
                return FlowTokenResult.failure(FlowError("Login flow step returned no response"))
            if not response.subtasks:
                self.session.mark_authenticated(self.clock.now())
                logger.info("Login flow completed after %s steps", steps)
                return result
            if steps >= self.max_steps:
                return FlowTokenResult.failure(
                    FlowError(f"Login flow exceeded {self.max_steps} steps")
                )
            steps += 1
            subtask_id = response.subtasks[0].subtask_id
            logger.debug("Flow step %s: %s", steps, subtask_id)
            result = await self.registry.dispatch(subtask_id, response, credentials, flow)

        logger.info("Login flow failed: %s", result.err)
        return result

    async def send(self, request: FlowRequest, auth: AuthenticatorPort) -> FlowTokenResult:
        params = {"flow_name": request.flow_name} if isinstance(request, FlowInitRequest) else None
        try:
            data = await self.pipeline.request_json(
                "POST",
                FLOW_URL,
                auth=auth,
                params=params,
                json=request.to_json(),
                headers=FLOW_HEADERS,
            )
        except ApiError as e:
            return FlowTokenResult.failure(e)
        return self.classify(data)

    @staticmethod
    def classify(data: Any) -> FlowTokenResult:
        if not isinstance(data, dict):
            return FlowTokenResult.failure(FlowError("Unexpected login flow response."))
        flow = FlowResponse.from_json(data)
        if flow.errors:
            first = flow.errors[0]
            if first.code is not None:
                message = f"Authentication error ({first.code}): {first.message}"
            else:
                message = f"Authentication error: {first.message}"
            return FlowTokenResult.failure(FlowError(message))
        if data.get("flow_token") is None:
            return FlowTokenResult.failure(FlowError("flow_token not found."))
        if flow.flow_token is None:
            return FlowTokenResult.failure(FlowError("flow_token was not a string."))
        if flow.status == "error":
            return FlowTokenResult.failure(FlowError("Login flow ended with status error."))
        return FlowTokenResult.success(flow)
