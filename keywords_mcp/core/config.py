"""Глобальные константы и настройки MCP-шлюза Keywords Everywhere."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("keywords_mcp.core.config")


def _get_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(0.0, float(raw))
    except ValueError:
        logger.warning("Invalid %s=%r, falling back to %s", name, raw, default)
        return default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return max(0, int(raw))
    except ValueError:
        logger.warning("Invalid %s=%r, falling back to %s", name, raw, default)
        return default


SERVER_NAME = "mcp-keywords-everywhere"
SERVER_VERSION = os.getenv("APP_VERSION", "1.1.0")

# Версия, которую сервер сообщает в ответе на initialize.
PROTOCOL_VERSION = "2025-06-18"
# Клиентские версии принимаются по префиксу семейства.
PROTOCOL_FAMILY = os.getenv("MCP_PROTOCOL_FAMILY", "2025-")

SERVER_INFO: Dict[str, str] = {
    "name": SERVER_NAME,
    "version": SERVER_VERSION,
}
SERVER_CAPABILITIES: Dict[str, Dict[str, object]] = {
    "tools": {
        "listChanged": False,
    },
}

DEFAULT_BASE_URL = "https://api.keywordseverywhere.com/v1"

SESSION_HEADER = "Mcp-Session-Id"
PROTOCOL_VERSION_HEADER = "MCP-Protocol-Version"
API_KEY_HEADER = "X-API-Key"
API_KEY_QUERY_PARAM = "apiKey"

REQUEST_TIMEOUT = _get_float("MCP_REQUEST_TIMEOUT", 30.0)
SESSION_TTL_SECONDS = _get_float("MCP_SESSION_TTL_SECONDS", 0.0)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _get_int("PORT", 3000)


@dataclass(slots=True)
class UpstreamConfig:
    """Настройки клиента Keywords Everywhere API, получаемые из окружения."""

    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    timeout: float = 25.0
    max_retries: int = 3
    backoff_base: float = 1.0

    @classmethod
    def from_env(cls) -> "UpstreamConfig":
        api_key = (os.getenv("KEYWORDS_EVERYWHERE_API_KEY") or "").strip() or None
        if api_key is None:
            logger.warning(
                "KEYWORDS_EVERYWHERE_API_KEY is not set; tool calls require a per-request key"
            )
        return cls(
            base_url=os.getenv("KEYWORDS_EVERYWHERE_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
            api_key=api_key,
            timeout=_get_float("UPSTREAM_TIMEOUT", 25.0),
            max_retries=_get_int("UPSTREAM_MAX_RETRIES", 3),
            backoff_base=_get_float("UPSTREAM_BACKOFF_BASE", 1.0),
        )


@dataclass(slots=True)
class AnalyticsConfig:
    """Настройки счётчиков использования."""

    enabled: bool = True
    path: Path = Path("data/analytics.json")
    flush_interval: float = 60.0

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        return cls(
            enabled=_get_bool(os.getenv("ANALYTICS_ENABLED"), default=True),
            path=Path(os.getenv("ANALYTICS_FILE", "data/analytics.json")),
            flush_interval=_get_float("ANALYTICS_FLUSH_INTERVAL", 60.0),
        )


UPSTREAM_CONFIG = UpstreamConfig.from_env()
ANALYTICS_CONFIG = AnalyticsConfig.from_env()

__all__ = [
    "ANALYTICS_CONFIG",
    "API_KEY_HEADER",
    "API_KEY_QUERY_PARAM",
    "AnalyticsConfig",
    "HOST",
    "LOG_LEVEL",
    "PORT",
    "PROTOCOL_FAMILY",
    "PROTOCOL_VERSION",
    "PROTOCOL_VERSION_HEADER",
    "REQUEST_TIMEOUT",
    "SERVER_CAPABILITIES",
    "SERVER_INFO",
    "SERVER_NAME",
    "SERVER_VERSION",
    "SESSION_HEADER",
    "SESSION_TTL_SECONDS",
    "UPSTREAM_CONFIG",
    "UpstreamConfig",
]
