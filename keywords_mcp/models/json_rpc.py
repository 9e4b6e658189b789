"""Pydantic-модели для JSON-RPC вызовов и состояния сессий MCP."""

from __future__ import annotations

import time
from typing import Any, Dict, Optional, Literal

from pydantic import BaseModel, Field


class JsonRpcRequest(BaseModel):
    """Стандартный JSON-RPC 2.0 запрос.

    Запрос без `id` (или с `id: null`) считается уведомлением и не получает ответа.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Optional[Any] = None
    id: Optional[Any] = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcResponse(BaseModel):
    """Успешный JSON-RPC 2.0 ответ."""

    jsonrpc: Literal["2.0"] = "2.0"
    result: Any = None
    id: Optional[Any] = None


class JsonRpcErrorObj(BaseModel):
    """Структура ошибки JSON-RPC 2.0."""

    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 ответ с ошибкой."""

    jsonrpc: Literal["2.0"] = "2.0"
    error: JsonRpcErrorObj
    id: Optional[Any] = None


class InitializeParams(BaseModel):
    """Параметры метода `initialize` MCP."""

    protocolVersion: Optional[str] = None
    clientInfo: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    """Минимальное состояние активной MCP-сессии."""

    id: str
    created_at: float = Field(default_factory=time.time)
    last_seen_at: float = Field(default_factory=time.time)
    client_info: Dict[str, Any] = Field(default_factory=dict)
    capabilities: Dict[str, Any] = Field(default_factory=dict)


def dump_envelope(envelope: JsonRpcResponse | JsonRpcError) -> Dict[str, Any]:
    """Сериализует конверт; `data` у ошибки опускается, если не задано."""
    payload = envelope.model_dump()
    error = payload.get("error")
    if isinstance(error, dict) and error.get("data") is None:
        error.pop("data", None)
    return payload


__all__ = [
    "InitializeParams",
    "JsonRpcError",
    "JsonRpcErrorObj",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "SessionState",
    "dump_envelope",
]
