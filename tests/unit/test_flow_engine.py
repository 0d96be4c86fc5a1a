from __future__ import annotations

import httpx
import pytest
import respx

from twitter_session.domain.errors import (
    ApiError,
    FlowError,
    StaleFlowTokenError,
    UnhandledSubtaskError,
)
from twitter_session.domain.model import Credentials, FlowSubtaskRequest, FlowTokenResult
from twitter_session.infrastructure.auth.flow_engine import FlowEngine
from tests.unit._fakes_auth import (
    FLOW_PATH,
    GUEST_URL,
    T0,
    body_of,
    error_response,
    guest_response,
    make_client,
    subtask_response,
    success_response,
)

CSRF_COOKIE = {"set-cookie": "ct0=csrf1; Domain=.x.com; Path=/"}


def _routes(*flow_responses):
    guest = respx.post(GUEST_URL).mock(return_value=guest_response())
    flow = respx.post(host="api.x.com", path=FLOW_PATH)
    flow.mock(side_effect=list(flow_responses))
    return guest, flow


@pytest.mark.asyncio()
@respx.mock
async def test_password_then_success_logs_in():
    guest, flow = _routes(
        subtask_response("t1", "LoginEnterPassword"), success_response("t2", CSRF_COOKIE)
    )
    client = make_client()

    assert client.session.authenticated_at is None
    await client.login("alice", "hunter2")

    assert client.session.authenticated_at == T0
    assert await client.is_logged_in()
    assert guest.call_count == 1
    assert flow.call_count == 2

    init, password = (c.request for c in flow.calls)
    assert init.url.params["flow_name"] == "login"
    assert body_of(init)["flow_name"] == "login"
    assert init.headers["x-guest-token"] == "test-guest-token"
    assert init.headers["x-twitter-auth-type"] == "OAuth2Client"
    assert body_of(password)["flow_token"] == "t1"
    assert body_of(password)["subtask_inputs"][0]["enter_password"]["password"] == "hunter2"


@pytest.mark.asyncio()
@respx.mock
async def test_standard_flow_chains_flow_tokens():
    _, flow = _routes(
        subtask_response("t1", "LoginJsInstrumentationSubtask"),
        subtask_response("t2", "LoginEnterUserIdentifierSSO"),
        subtask_response("t3", "LoginEnterPassword"),
        subtask_response("t4", "AccountDuplicationCheck"),
        subtask_response("t5", "LoginSuccessSubtask"),
    )
    client = make_client()
    await client.login("alice", "hunter2")

    # Success step completes locally, so init plus four submissions
    assert flow.call_count == 5
    sent_tokens = [body_of(c.request)["flow_token"] for c in flow.calls[1:]]
    assert sent_tokens == ["t1", "t2", "t3", "t4"]
    assert client.session.authenticated_at == T0


@pytest.mark.asyncio()
@respx.mock
async def test_error_in_first_response_rejects_login():
    _routes(error_response("bad request"))
    client = make_client()

    with pytest.raises(FlowError, match="bad request"):
        await client.login("alice", "hunter2")
    assert client.session.authenticated_at is None


@pytest.mark.asyncio()
@respx.mock
async def test_error_code_is_included_in_message():
    _routes(error_response("Could not log you in now.", code=399))
    with pytest.raises(FlowError, match=r"Authentication error \(399\): Could not log you in now\."):
        await make_client().login("alice", "hunter2")


@pytest.mark.asyncio()
@respx.mock
async def test_unhandled_step_returns_error_and_sends_nothing_for_it():
    _, flow = _routes(subtask_response("t1", "CustomChallenge"))
    client = make_client()
    await client.guest_tokens.refresh()

    result = await client.flow_engine.run(Credentials("alice", "pw"), client.user_auth)
    assert result.status == "error"
    assert isinstance(result.err, UnhandledSubtaskError)
    assert "CustomChallenge" in str(result.err)
    assert flow.call_count == 1


@pytest.mark.asyncio()
@respx.mock
async def test_custom_handler_answers_custom_step():
    _, flow = _routes(subtask_response("t1", "CustomChallenge"), success_response("t2"))
    client = make_client()

    async def answer(subtask_id, previous, credentials, api):
        return await api.send_flow_request(
            FlowSubtaskRequest(
                flow_token=api.get_flow_token(),
                subtask_inputs=[{"subtask_id": subtask_id, "enter_text": {"text": "42"}}],
            )
        )

    client.register_auth_subtask_handler("CustomChallenge", answer)
    await client.login("alice", "pw")
    assert body_of(flow.calls.last.request)["subtask_inputs"][0]["enter_text"]["text"] == "42"


@pytest.mark.asyncio()
@respx.mock
async def test_handler_with_stale_token_is_rejected():
    _, flow = _routes(subtask_response("t1", "CustomChallenge"))
    client = make_client()

    async def stale(subtask_id, previous, credentials, api):
        return await api.send_flow_request(
            FlowSubtaskRequest(flow_token="t0", subtask_inputs=[{"subtask_id": subtask_id}])
        )

    client.register_auth_subtask_handler("CustomChallenge", stale)
    with pytest.raises(StaleFlowTokenError):
        await client.login("alice", "pw")
    assert flow.call_count == 1


@pytest.mark.asyncio()
@respx.mock
async def test_endless_flow_stops_at_step_limit():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    counter = {"n": 0}

    def endless(request: httpx.Request) -> httpx.Response:
        counter["n"] += 1
        return subtask_response(f"t{counter['n']}", "LoginJsInstrumentationSubtask")

    flow = respx.post(host="api.x.com", path=FLOW_PATH).mock(side_effect=endless)
    client = make_client()  # max_flow_steps=10

    with pytest.raises(FlowError, match="exceeded 10 steps"):
        await client.login("alice", "pw")
    assert flow.call_count == 11


@pytest.mark.asyncio()
@respx.mock
async def test_deny_login_rejects():
    _routes(subtask_response("t1", "DenyLoginSubtask"))
    with pytest.raises(FlowError, match="DenyLoginSubtask"):
        await make_client().login("alice", "pw")


@pytest.mark.asyncio()
@respx.mock
async def test_http_error_status_surfaces_as_api_error():
    _routes(httpx.Response(400, json={"errors": [{"code": 366, "message": "flow name missing"}]}))
    with pytest.raises(ApiError) as exc:
        await make_client().login("alice", "pw")
    assert exc.value.status_code == 400
    assert exc.value.errors[0].code == 366


@pytest.mark.parametrize(
    "data, message",
    [
        ({"subtasks": []}, "flow_token not found."),
        ({"flow_token": 5}, "flow_token was not a string."),
        ({"flow_token": "t", "status": "error"}, "status error"),
        (["not", "a", "dict"], "Unexpected"),
    ],
)
def test_classify_rejects_malformed_responses(data, message):
    result = FlowEngine.classify(data)
    assert result.status == "error"
    assert message in str(result.err)


def test_classify_accepts_response_without_steps():
    result = FlowEngine.classify({"flow_token": "t9", "subtasks": []})
    assert result.status == "success"
    assert result.response.flow_token == "t9"
    assert result.response.subtasks == []


@pytest.mark.asyncio()
@respx.mock
async def test_second_login_runs_flow_as_guest_again():
    guest = respx.post(GUEST_URL).mock(return_value=guest_response())
    flow = respx.post(host="api.x.com", path=FLOW_PATH).mock(
        side_effect=[
            subtask_response("t1", "LoginEnterPassword"),
            success_response("t2", {"set-cookie": "auth_token=first; Domain=.x.com; Path=/"}),
            subtask_response("t3", "LoginEnterPassword"),
            error_response("Wrong password!"),
        ]
    )
    client = make_client()
    await client.login("alice", "pw")
    assert client.user_auth.is_authenticated()

    with pytest.raises(FlowError, match="Wrong password"):
        await client.login("alice", "wrong")

    assert guest.call_count == 2
    for call in flow.calls[2:]:
        assert call.request.headers["x-guest-token"] == "test-guest-token"
        assert call.request.headers["x-twitter-auth-type"] == "OAuth2Client"
    # A failed re-login leaves the session logged out
    assert client.session.authenticated_at is None
    assert not client.user_auth.is_authenticated()


@pytest.mark.asyncio()
@respx.mock
async def test_login_over_restored_session_keeps_guest_headers_mid_flow():
    _, flow = _routes(
        subtask_response("t1", "LoginEnterPassword"),
        httpx.Response(
            200,
            json={"flow_token": "t2", "subtasks": [{"subtask_id": "AccountDuplicationCheck"}]},
            headers={"set-cookie": "auth_token=new; Domain=.x.com; Path=/"},
        ),
        success_response("t3"),
    )
    client = make_client()
    client.set_cookies(["auth_token=old; Domain=.x.com; Path=/", "ct0=c; Domain=.x.com; Path=/"])

    await client.login("alice", "pw")

    assert flow.call_count == 3
    for call in flow.calls:
        assert call.request.headers["x-guest-token"] == "test-guest-token"
        assert call.request.headers["x-twitter-auth-type"] == "OAuth2Client"
    assert "auth_token=old" not in flow.calls[0].request.headers.get("cookie", "")
    assert client.session.get_cookie("auth_token", "https://x.com") == "new"


@pytest.mark.asyncio()
@respx.mock
async def test_success_result_without_response_ends_flow_with_error():
    _routes(subtask_response("t1", "CustomChallenge"))
    client = make_client()

    async def empty(subtask_id, previous, credentials, api):
        return FlowTokenResult(status="success")

    client.register_auth_subtask_handler("CustomChallenge", empty)
    with pytest.raises(FlowError, match="no response"):
        await client.login("alice", "pw")
    assert client.session.authenticated_at is None
