from __future__ import annotations

import json
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import pytest
from fastapi.testclient import TestClient

import keywords_mcp.main as mcp
from keywords_mcp.api import routes
from keywords_mcp.core.config import PROTOCOL_VERSION
from keywords_mcp.core.session import SESSIONS
from keywords_mcp.tools.registry import TOOLS


def _initialize(client: TestClient, request_id: Any = 1) -> str:
    response = client.post(
        "/mcp",
        json={
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "initialize",
            "params": {"clientInfo": {"name": "pytest", "version": "1.0"}, "capabilities": {}},
        },
    )
    assert response.status_code == 200
    return response.headers["mcp-session-id"]


def _call(
    client: TestClient,
    session_id: Optional[str],
    method: str,
    params: Optional[Dict[str, Any]] = None,
    *,
    request_id: Any = 2,
    headers: Optional[Dict[str, str]] = None,
    url: str = "/mcp",
):
    body: Dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        body["params"] = params
    all_headers = dict(headers or {})
    if session_id:
        all_headers["Mcp-Session-Id"] = session_id
    return client.post(url, json=body, headers=all_headers)


def test_initialize_creates_session_and_returns_capabilities(client: TestClient) -> None:
    response = client.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["id"] == 1
    assert payload["result"]["protocolVersion"] == PROTOCOL_VERSION
    assert payload["result"]["serverInfo"]["name"] == "mcp-keywords-everywhere"
    assert "tools" in payload["result"]["capabilities"]
    session_id = response.headers["mcp-session-id"]
    assert SESSIONS.get(session_id) is not None


def test_initialize_stores_client_info(client: TestClient) -> None:
    session_id = _initialize(client)
    assert SESSIONS.get(session_id).client_info == {"name": "pytest", "version": "1.0"}


def test_each_initialize_gets_fresh_session(client: TestClient) -> None:
    ids = {_initialize(client, request_id=i) for i in range(20)}
    assert len(ids) == 20


def test_unknown_session_is_rejected(client: TestClient) -> None:
    response = _call(client, "does-not-exist", "tools/list")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == -32000
    assert response.json()["error"]["message"] == "Session not found"


def test_missing_session_is_rejected_for_non_initialize(client: TestClient) -> None:
    response = _call(client, None, "tools/list")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32002


def test_unsupported_protocol_version_fails_before_session_work(client: TestClient) -> None:
    response = client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 7, "method": "initialize"},
        headers={"MCP-Protocol-Version": "2024-11-05"},
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["id"] == 7
    assert payload["error"]["code"] == -32600
    assert "2024-11-05" in payload["error"]["message"]
    assert "mcp-session-id" not in response.headers
    assert SESSIONS.count() == 0


def test_supported_protocol_version_family_is_accepted(client: TestClient) -> None:
    response = client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "id": 1, "method": "initialize"},
        headers={"MCP-Protocol-Version": "2025-03-26"},
    )
    assert response.status_code == 200
    assert "result" in response.json()


def test_tools_list_matches_registry_order(client: TestClient) -> None:
    session_id = _initialize(client)
    response = _call(client, session_id, "tools/list")

    assert response.status_code == 200
    tools = response.json()["result"]["tools"]
    assert [tool["name"] for tool in tools] == list(TOOLS)
    keyword_data = next(tool for tool in tools if tool["name"] == "get_keyword_data")
    assert keyword_data["inputSchema"]["type"] == "object"
    assert keyword_data["inputSchema"]["required"] == ["keywords"]


def test_unknown_tool_is_tool_not_found(client: TestClient) -> None:
    session_id = _initialize(client)
    response = _call(client, session_id, "tools/call", {"name": "get_weather", "arguments": {}})

    assert response.status_code == 200
    error = response.json()["error"]
    assert error["code"] == -32601
    assert error["message"] == "Tool not found: get_weather"


def test_unknown_method_is_not_supported(client: TestClient) -> None:
    session_id = _initialize(client)
    response = _call(client, session_id, "resources/list", request_id="abc")

    payload = response.json()
    assert payload["id"] == "abc"
    assert payload["error"]["code"] == -32601
    assert payload["error"]["message"] == "Method not supported: resources/list"


def test_ping(client: TestClient) -> None:
    session_id = _initialize(client)
    response = _call(client, session_id, "ping", request_id=0)

    assert response.json() == {"jsonrpc": "2.0", "id": 0, "result": {}}


def test_get_credits_returns_single_text_block(client: TestClient, upstream) -> None:
    upstream.queue((200, [1234]))
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    assert response.status_code == 200
    result = response.json()["result"]
    assert result == {"content": [{"type": "text", "text": "Credit Balance: 1234"}], "isError": False}
    request = upstream.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/v1/account/credits"
    assert request.headers["authorization"] == "Bearer default-key"


def test_upstream_auth_failure_is_tool_error_not_protocol_error(client: TestClient, upstream) -> None:
    upstream.queue((401, {"message": "invalid key"}))
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    assert response.status_code == 200
    payload = response.json()
    assert "error" not in payload
    assert payload["result"]["isError"] is True
    text = payload["result"]["content"][0]["text"]
    assert "Authentication failed (401)" in text
    assert "invalid key" not in text


def test_rate_limited_call_is_retried(client: TestClient, upstream) -> None:
    upstream.queue((429, {}), (429, {}), (200, [50]))
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    result = response.json()["result"]
    assert result["isError"] is False
    assert result["content"][0]["text"] == "Credit Balance: 50"
    assert len(upstream.requests) == 3
    assert upstream.delays == [1.0, 2.0]


def test_rate_limit_exhaustion_is_reported(client: TestClient, upstream) -> None:
    upstream.queue((429, {}), (429, {}), (429, {}), (429, {}))
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    result = response.json()["result"]
    assert result["isError"] is True
    assert "Rate limit exceeded (429)" in result["content"][0]["text"]
    assert upstream.delays == [1.0, 2.0, 4.0]


@pytest.mark.parametrize(
    "url,headers,expected",
    [
        ("/mcp?apiKey=query-key", {}, "Bearer query-key"),
        ("/mcp", {"X-API-Key": "header-key"}, "Bearer header-key"),
        ("/mcp?apiKey=query-key", {"X-API-Key": "header-key"}, "Bearer query-key"),
        ("/mcp", {}, "Bearer default-key"),
    ],
)
def test_credential_resolution_order(client: TestClient, upstream, url: str, headers: Dict[str, str], expected: str) -> None:
    session_id = _initialize(client)
    upstream.queue((200, [1]))

    _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}}, url=url, headers=headers)

    assert upstream.requests[-1].headers["authorization"] == expected


def test_credential_does_not_leak_between_requests(client: TestClient, upstream) -> None:
    session_id = _initialize(client)
    upstream.queue((200, [1]), (200, [2]))

    _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}}, headers={"X-API-Key": "alice"})
    _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    assert upstream.requests[0].headers["authorization"] == "Bearer alice"
    assert upstream.requests[1].headers["authorization"] == "Bearer default-key"


def test_missing_credential_is_tool_error(client: TestClient, upstream, tracker) -> None:
    from keywords_mcp.api import routes

    routes.configure_routes(client=upstream.make_client(api_key=None), tracker=tracker)
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})

    result = response.json()["result"]
    assert result["isError"] is True
    assert "API key is not configured" in result["content"][0]["text"]
    assert upstream.requests == []


def test_invoke_alias(client: TestClient, upstream) -> None:
    upstream.queue((200, {"totalKeywords": 10, "totalTraffic": 200, "trafficCost": 35}))
    session_id = _initialize(client)

    response = _call(client, session_id, "invoke", {"tool": "get_domain_traffic", "params": {"domain": "example.com"}})

    result = response.json()["result"]
    assert result["isError"] is False
    assert "- Total Traffic: 200" in result["content"][0]["text"]
    assert json.loads(upstream.requests[0].content) == {"domain": "example.com", "country": ""}


@pytest.mark.parametrize("tool_name", list(TOOLS))
def test_every_tool_accepts_only_required_arguments(client: TestClient, upstream, tool_name: str) -> None:
    spec = TOOLS[tool_name]
    sample = {"keywords": ["seo"], "keyword": "seo", "domain": "example.com", "url": "https://example.com/"}
    arguments = {name: sample[name] for name in spec.input_schema.required}
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": tool_name, "arguments": arguments})

    payload = response.json()
    assert "error" not in payload
    assert payload["result"]["isError"] is False
    assert len(upstream.requests) == 1


def test_missing_required_argument_is_invalid_params(client: TestClient, upstream) -> None:
    session_id = _initialize(client)

    response = _call(client, session_id, "tools/call", {"name": "get_domain_keywords", "arguments": {"num": 5}})

    error = response.json()["error"]
    assert error["code"] == -32602
    assert "domain" in error["message"]
    assert upstream.requests == []


def test_keyword_data_is_sent_as_form(client: TestClient, upstream) -> None:
    upstream.queue(
        (
            200,
            {"data": [{"keyword": "seo", "vol": 1000, "cpc": {"currency": "$", "value": "1.20"}, "competition": 0.4, "trend": []}]},
        )
    )
    session_id = _initialize(client)

    response = _call(
        client,
        session_id,
        "tools/call",
        {"name": "get_keyword_data", "arguments": {"keywords": ["seo", "sem"], "country": "us"}},
    )

    request = upstream.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    form = parse_qs(request.content.decode())
    assert form == {"kw[]": ["seo", "sem"], "country": ["us"], "currency": ["myr"], "dataSource": ["cli"]}
    text = response.json()["result"]["content"][0]["text"]
    assert text.startswith("seo:\n- Search Volume: 1000\n- CPC: $1.20")


def test_related_keywords_are_sent_as_json(client: TestClient, upstream) -> None:
    upstream.queue((200, [{"keyword": "seo tools", "vol": 10}]))
    session_id = _initialize(client)

    _call(client, session_id, "tools/call", {"name": "get_related_keywords", "arguments": {"keyword": "seo"}})

    request = upstream.requests[0]
    assert request.headers["content-type"] == "application/json"
    assert json.loads(request.content) == {"keyword": "seo", "num": 10}


def test_batch_filters_notifications_and_keeps_order(client: TestClient) -> None:
    session_id = _initialize(client)

    response = client.post(
        "/mcp",
        json=[
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 3, "method": "tools/list"},
        ],
        headers={"Mcp-Session-Id": session_id},
    )

    assert response.status_code == 200
    payload = response.json()
    assert [item["id"] for item in payload] == [1, 3]
    assert "tools" in payload[1]["result"]


def test_batch_with_initialize_sets_session_header(client: TestClient) -> None:
    response = client.post(
        "/mcp",
        json=[
            {"jsonrpc": "2.0", "id": 1, "method": "initialize"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
        ],
    )

    assert response.status_code == 200
    assert [item["id"] for item in response.json()] == [1, 2]
    assert SESSIONS.get(response.headers["mcp-session-id"]) is not None


def test_batch_element_errors_are_isolated(client: TestClient) -> None:
    session_id = _initialize(client)

    response = client.post(
        "/mcp",
        json=[
            "not-an-object",
            {"jsonrpc": "2.0", "id": 2, "method": "nope"},
            {"jsonrpc": "2.0", "id": 3, "method": "ping"},
        ],
        headers={"Mcp-Session-Id": session_id},
    )

    payload = response.json()
    assert payload[0]["error"]["code"] == -32600
    assert payload[0]["id"] is None
    assert payload[1]["error"]["code"] == -32601
    assert payload[2]["result"] == {}


def test_notification_only_batch_has_no_body(client: TestClient) -> None:
    session_id = _initialize(client)

    response = client.post(
        "/mcp",
        json=[{"jsonrpc": "2.0", "method": "notifications/initialized"}],
        headers={"Mcp-Session-Id": session_id},
    )

    assert response.status_code == 202
    assert response.content == b""


def test_single_notification_has_no_body(client: TestClient) -> None:
    session_id = _initialize(client)

    response = client.post(
        "/mcp",
        json={"jsonrpc": "2.0", "method": "notifications/initialized"},
        headers={"Mcp-Session-Id": session_id},
    )

    assert response.status_code == 202
    assert response.content == b""


def test_empty_batch_is_invalid(client: TestClient) -> None:
    session_id = _initialize(client)
    response = client.post("/mcp", json=[], headers={"Mcp-Session-Id": session_id})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32600


def test_unparsable_body_is_parse_error(client: TestClient) -> None:
    response = client.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32700


def test_deeply_nested_body_is_parse_error(client: TestClient) -> None:
    body = b"[" * 100_000 + b"]" * 100_000
    response = client.post("/mcp", content=body, headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32700


def test_non_object_params_are_invalid(client: TestClient) -> None:
    session_id = _initialize(client)
    response = _call(client, session_id, "tools/call", ["get_credits"])

    assert response.json()["error"]["code"] == -32602


def test_internal_error_is_reported_as_json_rpc_error(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    from keywords_mcp.api import dispatcher

    async def boom(params: Dict[str, Any], ctx: Any) -> Dict[str, Any]:
        raise RuntimeError("kaboom")

    monkeypatch.setitem(dispatcher.METHOD_HANDLERS, "ping", boom)
    session_id = _initialize(client)

    response = _call(client, session_id, "ping", request_id=9)

    assert response.status_code == 500
    assert response.json()["id"] == 9
    assert response.json()["error"]["code"] == -32603


def test_delete_terminates_session_once(client: TestClient) -> None:
    session_id = _initialize(client)

    first = client.delete("/mcp", headers={"Mcp-Session-Id": session_id})
    second = client.delete("/mcp", headers={"Mcp-Session-Id": session_id})
    third = client.delete("/mcp", headers={"Mcp-Session-Id": session_id})

    assert first.status_code == 200
    assert first.json()["sessionId"] == session_id
    assert second.status_code == 404
    assert second.json()["error"]["code"] == -32000
    assert third.status_code == 404
    assert _call(client, session_id, "ping").status_code == 404


def test_delete_without_header(client: TestClient) -> None:
    response = client.delete("/mcp")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == -32602


def test_options_and_get(client: TestClient) -> None:
    assert client.options("/mcp").status_code == 200
    response = client.get("/mcp")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "message": "MCP server is running"}
    assert client.get("/health").json()["status"] == "healthy"


def test_usage_is_counted(client: TestClient, upstream, tracker) -> None:
    upstream.queue((200, [1]))
    session_id = _initialize(client)
    _call(client, session_id, "tools/call", {"name": "get_credits", "arguments": {}})
    client.get("/mcp")

    summary = client.get("/analytics").json()
    assert summary["enabled"] is True
    assert summary["totalRequests"] == 3
    assert summary["byMethod"] == {"POST": 2, "GET": 1}
    assert summary["byTool"] == {"get_credits": 1}
    assert client.get("/analytics/tools").json()["tools"] == [{"tool": "get_credits", "calls": 1}]


def test_notification_without_session_has_no_body(client: TestClient) -> None:
    response = client.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})

    assert response.status_code == 202
    assert response.content == b""
    assert SESSIONS.count() == 0


def test_notification_with_unsupported_version_has_no_body(client: TestClient) -> None:
    session_id = _initialize(client)
    response = client.post(
        "/mcp",
        json=[{"jsonrpc": "2.0", "method": "notifications/cancelled"}],
        headers={"Mcp-Session-Id": session_id, "MCP-Protocol-Version": "2024-11-05"},
    )

    assert response.status_code == 202
    assert response.content == b""


def test_get_and_delete_are_counted_with_lifespan_running(monkeypatch, upstream, tracker) -> None:
    ke_client = upstream.make_client()
    default_client, default_tracker = mcp.KE_CLIENT, mcp.USAGE
    monkeypatch.setattr(mcp, "USAGE", tracker)
    monkeypatch.setattr(mcp, "KE_CLIENT", ke_client)
    routes.configure_routes(client=ke_client, tracker=tracker)
    try:
        with TestClient(mcp.app) as client:
            session_id = _initialize(client)
            assert client.get("/mcp").status_code == 200
            assert client.delete("/mcp", headers={"Mcp-Session-Id": session_id}).status_code == 200
            assert client.delete("/mcp").status_code == 400
    finally:
        routes.configure_routes(client=default_client, tracker=default_tracker)

    summary = tracker.summary()
    assert summary["totalRequests"] == 4
    assert summary["byMethod"] == {"POST": 1, "GET": 1, "DELETE": 2}
