from __future__ import annotations

from typing import Any, Iterator, List, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

import keywords_mcp.main as mcp
from keywords_mcp.api import routes
from keywords_mcp.core.config import AnalyticsConfig, UpstreamConfig
from keywords_mcp.core.session import SESSIONS
from keywords_mcp.services.analytics import UsageTracker
from keywords_mcp.services.keywords_everywhere import KeywordsEverywhereClient


class FakeUpstream:
    """Очередь заготовленных ответов Keywords Everywhere API + журнал запросов."""

    def __init__(self) -> None:
        self.responses: List[Tuple[int, Any]] = []
        self.requests: List[httpx.Request] = []
        self.delays: List[float] = []

    def queue(self, *responses: Tuple[int, Any]) -> None:
        self.responses.extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.pop(0) if self.responses else (200, {})
        return httpx.Response(status, json=body)

    async def sleep(self, delay: float) -> None:
        self.delays.append(delay)

    def make_client(self, *, api_key: str | None = "default-key") -> KeywordsEverywhereClient:
        return KeywordsEverywhereClient(
            UpstreamConfig(base_url="https://api.test/v1", api_key=api_key),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
            sleep=self.sleep,
        )


@pytest.fixture(autouse=True)
def clear_sessions() -> None:
    SESSIONS.clear()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def tracker(tmp_path) -> UsageTracker:
    return UsageTracker(AnalyticsConfig(enabled=True, path=tmp_path / "analytics.json", flush_interval=60))


@pytest.fixture
def client(upstream: FakeUpstream, tracker: UsageTracker) -> Iterator[TestClient]:
    routes.configure_routes(client=upstream.make_client(), tracker=tracker)
    try:
        yield TestClient(mcp.app)
    finally:
        routes.configure_routes(client=mcp.KE_CLIENT, tracker=mcp.USAGE)


