from __future__ import annotations

from typing import Protocol

from twitter_session.domain.model import Credentials, FlowRequest, FlowResponse, FlowTokenResult


class FlowSubtaskHandlerApi(Protocol):
    """What a step handler may do: send the next flow request, read the token."""

    async def send_flow_request(self, request: FlowRequest) -> FlowTokenResult: ...

    def get_flow_token(self) -> str: ...


class FlowSubtaskHandler(Protocol):
    """Produces the next flow result for one step.

    Example::

        async def example_handler(subtask_id, previous, credentials, api):
            return await api.send_flow_request(
                FlowSubtaskRequest(
                    flow_token=api.get_flow_token(),
                    subtask_inputs=[{"subtask_id": subtask_id, "example": {"link": "next_link"}}],
                )
            )

        client.register_auth_subtask_handler("ExampleSubtask", example_handler)
    """

    async def __call__(
        self,
        subtask_id: str,
        previous_response: FlowResponse,
        credentials: Credentials,
        api: FlowSubtaskHandlerApi,
    ) -> FlowTokenResult: ...
