"""Диспетчер JSON-RPC: проверка версии протокола, разрешение сессии, маршрутизация методов.

Каждый HTTP-запрос проходит ProtocolVersionCheck -> SessionResolution -> MethodDispatch
и всегда заканчивается JSON-RPC результатом, JSON-RPC ошибкой или (для уведомлений)
пустым ответом 202. Исключения наружу не выходят.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from keywords_mcp.core.config import (
    PROTOCOL_FAMILY,
    PROTOCOL_VERSION,
    REQUEST_TIMEOUT,
    SERVER_CAPABILITIES,
    SERVER_INFO,
)
from keywords_mcp.core.errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    SESSION_NOT_FOUND,
    SESSION_REQUIRED,
    McpProtocolError,
    UpstreamError,
)
from keywords_mcp.core.session import SESSIONS, SessionManager
from keywords_mcp.models.json_rpc import (
    InitializeParams,
    JsonRpcError,
    JsonRpcErrorObj,
    JsonRpcRequest,
    JsonRpcResponse,
    SessionState,
    dump_envelope,
)
from keywords_mcp.services.formatting import format_response
from keywords_mcp.services.keywords_everywhere import KeywordsEverywhereClient
from keywords_mcp.tools.handlers import TOOL_HANDLERS, ToolResponse, _tool_error, _tool_ok
from keywords_mcp.tools.registry import TOOLS

logger = logging.getLogger("keywords_mcp.api.dispatcher")


@dataclass
class RequestContext:
    """Состояние одного HTTP-запроса; ключ API живёт только здесь."""

    session: SessionState
    client: KeywordsEverywhereClient
    credential: Optional[str] = None


@dataclass
class DispatchResult:
    """Что вернуть транспорту: тело (None -> без тела), HTTP-статус и id сессии для заголовка."""

    body: Any = None
    status_code: int = 200
    session_id: Optional[str] = None


MethodHandler = Callable[[Dict[str, Any], RequestContext], Awaitable[Any]]


def _json_rpc_error(code: int, message: str, *, data: Any = None, request_id: Any = None) -> JsonRpcError:
    return JsonRpcError(
        error=JsonRpcErrorObj(code=code, message=message, data=data),
        id=request_id,
    )


def _error_body(code: int, message: str, *, data: Any = None, request_id: Any = None) -> Dict[str, Any]:
    return dump_envelope(_json_rpc_error(code, message, data=data, request_id=request_id))


def _request_id(payload: Any) -> Any:
    return payload.get("id") if isinstance(payload, dict) else None


# --- методы MCP ---


async def _handle_initialize(params: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]:
    try:
        parsed = InitializeParams.model_validate(params)
    except ValidationError as exc:
        raise McpProtocolError("Invalid initialize params", code=INVALID_PARAMS, data=exc.errors()) from exc
    if parsed.clientInfo:
        ctx.session.client_info = parsed.clientInfo
    if parsed.capabilities:
        ctx.session.capabilities = parsed.capabilities
    logger.info("Initialize for session %s... client=%s", ctx.session.id[:8], parsed.clientInfo.get("name"))
    return {
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": SERVER_CAPABILITIES,
        "serverInfo": SERVER_INFO,
    }


async def _handle_ping(params: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]:
    return {}


async def _handle_tools_list(params: Dict[str, Any], ctx: RequestContext) -> Dict[str, Any]:
    return {"tools": [spec.as_mcp_dict() for spec in TOOLS.values()]}


async def _call_tool(name: Any, arguments: Any, ctx: RequestContext) -> ToolResponse:
    spec = TOOLS.get(name) if isinstance(name, str) else None
    handler = TOOL_HANDLERS.get(name) if isinstance(name, str) else None
    if spec is None or handler is None:
        raise McpProtocolError(
            f"Tool not found: {name}",
            code=METHOD_NOT_FOUND,
            data={"available": list(TOOLS)},
        )
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise McpProtocolError("Invalid params: 'arguments' must be an object", code=INVALID_PARAMS)
    missing = spec.missing_arguments(arguments)
    if missing:
        raise McpProtocolError(
            f"Invalid params: missing required argument(s): {', '.join(missing)}",
            code=INVALID_PARAMS,
            data={"missing": missing},
        )

    logger.info("Processing tools/call for: %s", name)
    try:
        raw = await handler(ctx.client, arguments, ctx.credential)
        text = format_response(name, raw)
    except UpstreamError as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return _tool_error(str(exc))
    except Exception as exc:
        # Сбой инструмента - это данные для ассистента, а не ошибка протокола.
        logger.exception("Unexpected failure in tool %s", name)
        return _tool_error(str(exc) or type(exc).__name__)
    logger.info("Tool %s executed successfully", name)
    return _tool_ok(text)


async def _handle_tools_call(params: Dict[str, Any], ctx: RequestContext) -> ToolResponse:
    return await _call_tool(params.get("name"), params.get("arguments"), ctx)


async def _handle_invoke(params: Dict[str, Any], ctx: RequestContext) -> ToolResponse:
    # Устаревшая форма tools/call: {"tool": ..., "params": {...}}.
    return await _call_tool(params.get("tool"), params.get("params"), ctx)


METHOD_HANDLERS: Dict[str, MethodHandler] = {
    "initialize": _handle_initialize,
    "ping": _handle_ping,
    "tools/list": _handle_tools_list,
    "tools/call": _handle_tools_call,
    "invoke": _handle_invoke,
}


# --- конечный автомат запроса ---


def check_protocol_version(version: Optional[str]) -> None:
    """Отсутствие версии допустимо; присутствующая должна быть из семейства PROTOCOL_FAMILY."""
    if version and not version.startswith(PROTOCOL_FAMILY):
        logger.warning("Unsupported protocol version: %s", version)
        raise McpProtocolError(f"Unsupported protocol version: {version}", code=INVALID_REQUEST)


def _is_initialize(payload: Any) -> bool:
    units = payload if isinstance(payload, list) else [payload]
    return any(isinstance(unit, dict) and unit.get("method") == "initialize" for unit in units)


def _only_notifications(payload: Any) -> bool:
    units = payload if isinstance(payload, list) else [payload]
    return bool(units) and all(isinstance(unit, dict) and unit.get("id") is None for unit in units)


def resolve_session(
    session_id: Optional[str],
    payload: Any,
    *,
    sessions: SessionManager = SESSIONS,
) -> SessionState:
    if session_id:
        session = sessions.get(session_id)
        if session is None:
            raise McpProtocolError("Session not found", code=SESSION_NOT_FOUND, http_status=404)
        return session
    if _is_initialize(payload):
        return sessions.create()
    raise McpProtocolError("Session ID required", code=SESSION_REQUIRED)


async def process_request(raw: Any, ctx: RequestContext) -> Optional[Dict[str, Any]]:
    """Один элемент JSON-RPC. None - ответа нет (уведомление).

    Протокольные ошибки превращаются в error-конверт; прочие исключения пробрасываются.
    """
    if not isinstance(raw, dict):
        return _error_body(INVALID_REQUEST, "Invalid Request")
    try:
        request = JsonRpcRequest.model_validate(raw)
    except ValidationError as exc:
        if raw.get("id") is None:
            logger.warning("Dropping malformed notification: %s", exc.errors())
            return None
        return _error_body(INVALID_REQUEST, "Invalid Request", data=exc.errors(), request_id=raw.get("id"))

    if request.is_notification:
        logger.debug("Notification %s acknowledged without response", request.method)
        return None

    handler = METHOD_HANDLERS.get(request.method)
    if handler is None:
        logger.warning("Method not supported: %s", request.method)
        return _error_body(METHOD_NOT_FOUND, f"Method not supported: {request.method}", request_id=request.id)

    params = request.params if request.params is not None else {}
    if not isinstance(params, dict):
        return _error_body(INVALID_PARAMS, "Invalid params: 'params' must be an object", request_id=request.id)

    try:
        result = await handler(params, ctx)
    except McpProtocolError as exc:
        return _error_body(exc.code, str(exc), data=exc.data, request_id=request.id)
    return dump_envelope(JsonRpcResponse(result=result, id=request.id))


async def _process_batch(units: List[Any], ctx: RequestContext) -> List[Dict[str, Any]]:
    responses: List[Dict[str, Any]] = []
    for unit in units:
        try:
            response = await process_request(unit, ctx)
        except Exception as exc:
            logger.exception("Unhandled error in batch element")
            response = _error_body(INTERNAL_ERROR, str(exc) or "Internal error", request_id=_request_id(unit))
        if response is not None:
            responses.append(response)
    return responses


async def _dispatch(payload: Any, ctx: RequestContext) -> DispatchResult:
    if isinstance(payload, list):
        responses = await _process_batch(payload, ctx)
        return DispatchResult(body=responses or None, status_code=200 if responses else 202)
    try:
        response = await process_request(payload, ctx)
    except Exception as exc:
        logger.exception("Unhandled MCP error")
        return DispatchResult(
            body=_error_body(INTERNAL_ERROR, str(exc) or "Internal error", request_id=_request_id(payload)),
            status_code=500,
        )
    if response is None:
        return DispatchResult(status_code=202)
    return DispatchResult(body=response)


async def handle_envelope(
    payload: Any,
    *,
    client: KeywordsEverywhereClient,
    protocol_version: Optional[str] = None,
    session_id: Optional[str] = None,
    credential: Optional[str] = None,
    sessions: SessionManager = SESSIONS,
    timeout: float = REQUEST_TIMEOUT,
) -> DispatchResult:
    """Полный цикл обработки тела POST /mcp."""
    request_id = _request_id(payload)
    try:
        check_protocol_version(protocol_version)
        if isinstance(payload, list) and not payload:
            raise McpProtocolError("Invalid Request: empty batch", code=INVALID_REQUEST)
        if not isinstance(payload, (list, dict)):
            raise McpProtocolError("Invalid Request", code=INVALID_REQUEST)
        session = resolve_session(session_id, payload, sessions=sessions)
    except McpProtocolError as exc:
        if _only_notifications(payload):
            logger.warning("Dropping notification rejected before dispatch: %s", exc)
            return DispatchResult(status_code=202)
        return DispatchResult(
            body=_error_body(exc.code, str(exc), data=exc.data, request_id=request_id),
            status_code=exc.http_status,
        )

    ctx = RequestContext(session=session, client=client, credential=credential)
    try:
        result = await asyncio.wait_for(_dispatch(payload, ctx), timeout=timeout or None)
    except asyncio.TimeoutError:
        logger.error("Request timed out after %.1f s (session %s...)", timeout, session.id[:8])
        result = DispatchResult(
            body=_error_body(INTERNAL_ERROR, "Request timed out", request_id=request_id),
            status_code=504,
        )
    except Exception as exc:  # pragma: no cover - _dispatch сам ловит ошибки
        logger.exception("Unhandled MCP error")
        result = DispatchResult(
            body=_error_body(INTERNAL_ERROR, "Internal server error", data=str(exc), request_id=request_id),
            status_code=500,
        )

    if _is_initialize(payload):
        result.session_id = session.id
    return result


def terminate_session(session_id: Optional[str], *, sessions: SessionManager = SESSIONS) -> DispatchResult:
    """DELETE /mcp: явное завершение сессии."""
    if not session_id:
        return DispatchResult(
            body=_error_body(INVALID_PARAMS, "Missing Mcp-Session-Id header"),
            status_code=400,
        )
    if not sessions.delete(session_id):
        return DispatchResult(
            body=_error_body(SESSION_NOT_FOUND, "Session not found"),
            status_code=404,
        )
    return DispatchResult(body={"status": "terminated", "sessionId": session_id})


__all__ = [
    "DispatchResult",
    "METHOD_HANDLERS",
    "RequestContext",
    "check_protocol_version",
    "handle_envelope",
    "process_request",
    "resolve_session",
    "terminate_session",
]
