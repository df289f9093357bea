import json

import httpx
import pytest

from api.apps.base import AppAdapterError
from api.apps.http_request import HttpRequestAdapter, OutgoingWebhookAdapter, apply_auth_headers, parse_headers


def test_parse_headers_accepts_json_strings():
    assert parse_headers('{"X-Trace": "1", "X-Count": 2}') == {"X-Trace": "1", "X-Count": "2"}
    assert parse_headers("not json") == {}


def test_auth_header_precedence():
    headers = {}
    apply_auth_headers(headers, {"apiKey": "k", "token": "t"})
    assert headers == {"X-API-Key": "k"}

    headers = {}
    apply_auth_headers(headers, {"accessToken": "t"})
    assert headers == {"Authorization": "Bearer t"}

    headers = {}
    apply_auth_headers(headers, {"username": "user", "password": "pass"})
    assert headers == {"Authorization": "Basic dXNlcjpwYXNz"}


async def test_http_request_sends_json_and_parses_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": 9})

    adapter = HttpRequestAdapter(transport=httpx.MockTransport(handler))
    output = await adapter.execute(
        "http_request",
        {"url": "https://api.example.com/items", "method": "post", "queryParams": {"dry": True}, "body": {"name": "x"}},
        {"token": "abc"},
    )

    assert output["ok"] is True
    assert output["status"] == 201
    assert output["data"] == {"id": 9}
    assert seen == {
        "method": "POST",
        "url": "https://api.example.com/items?dry=true",
        "auth": "Bearer abc",
        "body": {"name": "x"},
    }


async def test_http_request_raises_on_error_status():
    adapter = HttpRequestAdapter(transport=httpx.MockTransport(lambda request: httpx.Response(404, text="missing")))
    with pytest.raises(AppAdapterError, match="404") as exc_info:
        await adapter.execute("http_request", {"url": "https://api.example.com/x"}, None)
    assert exc_info.value.status_code == 404


async def test_outgoing_webhook_defaults_to_post():
    methods = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        return httpx.Response(204)

    adapter = OutgoingWebhookAdapter(transport=httpx.MockTransport(handler))
    output = await adapter.execute("send", {"url": "https://hooks.example.com/in", "body": {"a": 1}}, None)

    assert methods == ["POST"]
    assert output["data"] is None


async def test_missing_url_is_rejected():
    with pytest.raises(AppAdapterError, match="requires url"):
        await HttpRequestAdapter().execute("http_request", {}, None)
