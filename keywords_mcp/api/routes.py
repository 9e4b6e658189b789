"""FastAPI-маршруты MCP API: единая точка /mcp и служебные эндпоинты."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from keywords_mcp.api.dispatcher import DispatchResult, handle_envelope, terminate_session
from keywords_mcp.core.config import (
    API_KEY_HEADER,
    API_KEY_QUERY_PARAM,
    PROTOCOL_VERSION_HEADER,
    SERVER_NAME,
    SERVER_VERSION,
    SESSION_HEADER,
)
from keywords_mcp.core.errors import PARSE_ERROR
from keywords_mcp.core.session import SESSIONS
from keywords_mcp.services.analytics import UsageTracker
from keywords_mcp.services.keywords_everywhere import KeywordsEverywhereClient

logger = logging.getLogger("keywords_mcp.api.routes")

router = APIRouter()

_CLIENT: Optional[KeywordsEverywhereClient] = None
_TRACKER: Optional[UsageTracker] = None


def configure_routes(*, client: KeywordsEverywhereClient, tracker: UsageTracker) -> None:
    """Инициализируем ссылки на клиент API и счётчики, чтобы избежать циклов импорта."""
    global _CLIENT, _TRACKER
    _CLIENT = client
    _TRACKER = tracker


def _get_client() -> KeywordsEverywhereClient:
    if _CLIENT is None:
        raise RuntimeError("Routes are not configured: call configure_routes() first")
    return _CLIENT


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _tool_names(payload: Any) -> List[str]:
    units = payload if isinstance(payload, list) else [payload]
    names: List[str] = []
    for unit in units:
        if not isinstance(unit, dict) or not isinstance(unit.get("params"), dict):
            continue
        params = unit["params"]
        if unit.get("method") == "tools/call" and isinstance(params.get("name"), str):
            names.append(params["name"])
        elif unit.get("method") == "invoke" and isinstance(params.get("tool"), str):
            names.append(params["tool"])
    return names


def _track(request: Request, payload: Any = None) -> None:
    if _TRACKER is None:
        return
    common = {
        "method": request.method,
        "path": request.url.path,
        "client_ip": _client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }
    tools = _tool_names(payload) if payload is not None else []
    if not tools:
        _TRACKER.record(**common)
    for name in tools:
        _TRACKER.record(**common, tool_name=name)


def _resolve_credential(request: Request) -> Optional[str]:
    """Ключ из запроса важнее ключа по умолчанию из окружения."""
    override = request.query_params.get(API_KEY_QUERY_PARAM) or request.headers.get(API_KEY_HEADER)
    if override and override.strip():
        return override.strip()
    return _get_client().config.api_key


def _to_response(result: DispatchResult) -> Response:
    if result.body is None:
        response: Response = Response(status_code=result.status_code)
    else:
        response = JSONResponse(content=result.body, status_code=result.status_code)
    if result.session_id:
        response.headers[SESSION_HEADER] = result.session_id
    return response


@router.get("/health")
def health() -> Dict[str, Any]:
    return {
        "status": "healthy",
        "server": SERVER_NAME,
        "version": SERVER_VERSION,
        "transport": "streamable-http",
        "sessions": SESSIONS.count(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.options("/mcp")
def mcp_preflight() -> Response:
    return Response(status_code=200)


@router.get("/mcp")
async def mcp_info(request: Request) -> Dict[str, str]:
    _track(request)
    return {"status": "ok", "message": "MCP server is running"}


@router.post("/mcp")
async def mcp_rpc(request: Request) -> Response:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        _track(request)
        logger.warning("Rejected unparsable MCP body: %s", exc)
        return JSONResponse(
            status_code=400,
            content={"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}},
        )

    _track(request, payload)
    logger.info(
        "Received MCP request (session=%s, batch=%s)",
        (request.headers.get(SESSION_HEADER) or "-")[:8],
        isinstance(payload, list),
    )
    result = await handle_envelope(
        payload,
        client=_get_client(),
        protocol_version=request.headers.get(PROTOCOL_VERSION_HEADER),
        session_id=request.headers.get(SESSION_HEADER),
        credential=_resolve_credential(request),
    )
    return _to_response(result)


@router.delete("/mcp")
async def mcp_terminate(request: Request) -> Response:
    _track(request)
    return _to_response(terminate_session(request.headers.get(SESSION_HEADER)))


@router.get("/analytics")
def analytics_summary() -> Dict[str, Any]:
    if _TRACKER is None or not _TRACKER.enabled:
        return {"enabled": False}
    return {"enabled": True, **_TRACKER.summary()}


@router.get("/analytics/tools")
def analytics_tools() -> Dict[str, Any]:
    if _TRACKER is None or not _TRACKER.enabled:
        return {"enabled": False, "tools": []}
    return {"enabled": True, "tools": _TRACKER.tool_report()}


__all__ = ["configure_routes", "router"]
