"""Исключения протокольного уровня и ошибки вызовов Keywords Everywhere API."""

from __future__ import annotations

from typing import Any, Optional

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SESSION_NOT_FOUND = -32000
SESSION_REQUIRED = -32002


class McpProtocolError(Exception):
    """Ошибка протокола: превращается в JSON-RPC error, HTTP-статус задаёт транспорт."""

    def __init__(self, message: str, *, code: int, http_status: int = 400, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.http_status = http_status
        self.data = data


class UpstreamError(Exception):
    """Сбой обращения к Keywords Everywhere API, отдаётся клиенту как результат с isError."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MissingCredentialError(UpstreamError):
    pass


class BadRequestError(UpstreamError):
    pass


class AuthenticationError(UpstreamError):
    pass


class RateLimitError(UpstreamError):
    pass


class UpstreamApiError(UpstreamError):
    pass


__all__ = [
    "AuthenticationError",
    "BadRequestError",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "McpProtocolError",
    "METHOD_NOT_FOUND",
    "MissingCredentialError",
    "PARSE_ERROR",
    "RateLimitError",
    "SESSION_NOT_FOUND",
    "SESSION_REQUIRED",
    "UpstreamApiError",
    "UpstreamError",
]
