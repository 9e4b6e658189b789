# keywords_mcp/main.py
"""Точка входа FastAPI: MCP-шлюз к Keywords Everywhere API по HTTP-транспорту.

Запуск: `python -m keywords_mcp.main` или `uvicorn keywords_mcp.main:app`.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import configure_routes, router as api_router
from .core.config import (
    ANALYTICS_CONFIG,
    API_KEY_HEADER,
    HOST,
    LOG_LEVEL,
    PORT,
    PROTOCOL_VERSION,
    PROTOCOL_VERSION_HEADER,
    SERVER_VERSION,
    SESSION_HEADER,
    UPSTREAM_CONFIG,
)
from .core.session import SESSIONS
from .services.analytics import UsageTracker
from .services.keywords_everywhere import KeywordsEverywhereClient


logger = logging.getLogger("keywords_mcp")
if not logger.handlers:
    logging.basicConfig(level=LOG_LEVEL)


# Один клиент на процесс; ключ API в нём не хранится и передаётся в каждый вызов.
KE_CLIENT = KeywordsEverywhereClient(UPSTREAM_CONFIG)
USAGE = UsageTracker(ANALYTICS_CONFIG)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    await USAGE.start()
    logger.info("Keywords Everywhere MCP server ready (protocol %s)", PROTOCOL_VERSION)
    try:
        yield
    finally:
        await USAGE.stop()
        await KE_CLIENT.aclose()
        SESSIONS.clear()
        logger.info("Keywords Everywhere MCP server stopped")


# =========================
# FastAPI app
# =========================
app = FastAPI(title="Keywords Everywhere MCP", version=SERVER_VERSION, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", SESSION_HEADER, PROTOCOL_VERSION_HEADER, API_KEY_HEADER],
    expose_headers=[SESSION_HEADER],
)

configure_routes(client=KE_CLIENT, tracker=USAGE)
app.include_router(api_router)


def main() -> None:
    logger.info("Starting with HTTP transport on %s:%s", HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
