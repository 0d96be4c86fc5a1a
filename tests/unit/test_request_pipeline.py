from __future__ import annotations

import httpx
import pytest
import respx

from twitter_session.domain.errors import ApiError, AuthenticationError
from twitter_session.infrastructure.request_pipeline import FetchTransformOptions
from tests.unit._fakes_auth import GUEST_URL, guest_response, make_client

API_URL = "https://api.x.com/1.1/users/show.json"


@pytest.mark.asyncio()
@respx.mock
async def test_first_request_activates_guest_token_once():
    guest = respx.post(GUEST_URL).mock(return_value=guest_response("gt-1"))
    route = respx.get(API_URL).mock(return_value=httpx.Response(200, json={}))
    client = make_client()

    assert not client.has_guest_token()
    await client.request("GET", API_URL, params={"screen_name": "jack"})
    await client.request("GET", API_URL, params={"screen_name": "biz"})

    assert guest.call_count == 1
    sent = route.calls.last.request
    assert sent.headers["authorization"] == "Bearer test-bearer"
    assert sent.headers["x-guest-token"] == "gt-1"
    assert "x-csrf-token" not in sent.headers
    assert sent.url.params["screen_name"] == "biz"


@pytest.mark.asyncio()
@respx.mock
async def test_csrf_header_and_cookie_follow_the_jar():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    route = respx.get(API_URL).mock(
        side_effect=[
            httpx.Response(200, headers={"set-cookie": "ct0=rotated; Domain=.x.com; Path=/"}),
            httpx.Response(200),
        ]
    )
    client = make_client()
    client.set_cookies(["ct0=initial; Domain=.x.com; Path=/"])

    await client.request("GET", API_URL)
    await client.request("GET", API_URL)

    first, second = (c.request for c in route.calls)
    assert first.headers["x-csrf-token"] == "initial"
    assert second.headers["x-csrf-token"] == "rotated"
    assert "ct0=rotated" in second.headers["cookie"]


@pytest.mark.asyncio()
@respx.mock
async def test_non_success_status_raises_api_error_with_parsed_body():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    respx.get(API_URL).mock(
        return_value=httpx.Response(404, json={"errors": [{"code": 50, "message": "User not found."}]})
    )
    client = make_client()

    with pytest.raises(ApiError) as exc:
        await client.request_json("GET", API_URL)
    assert exc.value.status_code == 404
    assert exc.value.errors[0].code == 50
    assert exc.value.errors[0].message == "User not found."
    assert "404" in str(exc.value)


@pytest.mark.asyncio()
@respx.mock
async def test_post_is_not_retried_on_server_error():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    route = respx.post(API_URL).mock(return_value=httpx.Response(503, text="unavailable"))
    client = make_client()

    with pytest.raises(ApiError) as exc:
        await client.request("POST", API_URL, json={"a": 1})
    assert exc.value.data == "unavailable"
    assert route.call_count == 1


@pytest.mark.asyncio()
@respx.mock
async def test_bad_guest_token_is_dropped_and_reactivated():
    guest = respx.post(GUEST_URL).mock(
        side_effect=[guest_response("gt-1"), guest_response("gt-2")]
    )
    route = respx.get(API_URL).mock(
        side_effect=[
            httpx.Response(403, json={"errors": [{"code": 239, "message": "Bad guest token."}]}),
            httpx.Response(200, json={}),
        ]
    )
    client = make_client()

    with pytest.raises(ApiError):
        await client.request("GET", API_URL)
    assert not client.has_guest_token()

    await client.request("GET", API_URL)
    assert guest.call_count == 2
    assert route.calls.last.request.headers["x-guest-token"] == "gt-2"


@pytest.mark.asyncio()
@respx.mock
async def test_exhausted_incoming_limit_drops_guest_token():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    respx.get(API_URL).mock(return_value=httpx.Response(200, headers={"x-rate-limit-incoming": "0"}))
    client = make_client()

    await client.request("GET", API_URL)
    assert not client.has_guest_token()


@pytest.mark.asyncio()
@respx.mock
async def test_transform_hooks_run_after_auth_and_on_success():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    route = respx.get(host="proxy.example", path="/1.1/users/show.json").mock(
        return_value=httpx.Response(200, json={"proxied": True})
    )
    seen_auth = []

    def via_proxy(request: httpx.Request) -> httpx.Request:
        seen_auth.append(request.headers.get("authorization"))
        return httpx.Request(
            request.method,
            request.url.copy_with(host="proxy.example"),
            headers={k: v for k, v in request.headers.items() if k != "host"},
        )

    async def tag(response: httpx.Response) -> httpx.Response:
        return httpx.Response(
            response.status_code,
            json={**response.json(), "tagged": True},
            request=response.request,
        )

    client = make_client(transform=FetchTransformOptions(request=via_proxy, response=tag))
    assert await client.request_json("GET", API_URL) == {"proxied": True, "tagged": True}
    assert seen_auth == ["Bearer test-bearer"]
    assert route.call_count == 1


@pytest.mark.asyncio()
@respx.mock
async def test_request_json_empty_body_and_invalid_json():
    respx.post(GUEST_URL).mock(return_value=guest_response())
    respx.get(API_URL).mock(side_effect=[httpx.Response(204), httpx.Response(200, text="<html>")])
    client = make_client()

    assert await client.request_json("GET", API_URL) is None
    with pytest.raises(ApiError) as exc:
        await client.request_json("GET", API_URL)
    assert exc.value.data == "<html>"


@pytest.mark.asyncio()
async def test_require_auth_without_login_raises():
    client = make_client()
    with pytest.raises(AuthenticationError):
        await client.request("GET", API_URL, require_auth=True)
    await client.aclose()
