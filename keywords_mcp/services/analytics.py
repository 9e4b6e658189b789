"""Счётчики использования MCP-шлюза с периодическим сохранением на диск.

Запись события никогда не блокирует и не роняет обработку запроса: событие
кладётся в очередь, которую разбирает фоновая задача. Если задача не запущена
(например, приложение поднято без lifespan), событие применяется сразу.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Deque, Dict, List, Optional

from keywords_mcp.core.config import AnalyticsConfig

logger = logging.getLogger("keywords_mcp.services.analytics")

RECENT_EVENTS_LIMIT = 100


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class UsageEvent:
    method: str
    path: str
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    tool: Optional[str] = None
    timestamp: str = field(default_factory=_now_iso)


@dataclass
class UsageCounters:
    total_requests: int = 0
    by_method: Dict[str, int] = field(default_factory=dict)
    by_tool: Dict[str, int] = field(default_factory=dict)
    clients: Dict[str, int] = field(default_factory=dict)
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    recent: Deque[Dict[str, Any]] = field(default_factory=lambda: deque(maxlen=RECENT_EVENTS_LIMIT))

    def apply(self, event: UsageEvent) -> None:
        self.total_requests += 1
        self.by_method[event.method] = self.by_method.get(event.method, 0) + 1
        if event.tool:
            self.by_tool[event.tool] = self.by_tool.get(event.tool, 0) + 1
        if event.client_ip:
            self.clients[event.client_ip] = self.clients.get(event.client_ip, 0) + 1
        self.first_seen = self.first_seen or event.timestamp
        self.last_seen = event.timestamp
        self.recent.append(asdict(event))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "byMethod": dict(self.by_method),
            "byTool": dict(self.by_tool),
            "clients": dict(self.clients),
            "firstSeen": self.first_seen,
            "lastSeen": self.last_seen,
            "recent": list(self.recent),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "UsageCounters":
        counters = cls(
            total_requests=int(raw.get("totalRequests") or 0),
            by_method=dict(raw.get("byMethod") or {}),
            by_tool=dict(raw.get("byTool") or {}),
            clients=dict(raw.get("clients") or {}),
            first_seen=raw.get("firstSeen"),
            last_seen=raw.get("lastSeen"),
        )
        counters.recent.extend(raw.get("recent") or [])
        return counters


class UsageTracker:
    """Фоновый приёмник событий использования."""

    def __init__(self, config: AnalyticsConfig) -> None:
        self._config = config
        self._counters = UsageCounters()
        self._lock = Lock()
        self._dirty = False
        self._queue: Optional[asyncio.Queue[UsageEvent]] = None
        self._tasks: List[asyncio.Task[None]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def record(
        self,
        *,
        method: str,
        path: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        tool_name: Optional[str] = None,
    ) -> None:
        if not self._config.enabled:
            return
        try:
            event = UsageEvent(method=method, path=path, client_ip=client_ip, user_agent=user_agent, tool=tool_name)
            if self._queue is not None:
                self._enqueue(self._queue, event)
            else:
                self._apply(event)
        except Exception:  # pragma: no cover - учёт не должен влиять на запрос
            logger.exception("Failed to record usage event")

    def _enqueue(self, queue: asyncio.Queue[UsageEvent], event: UsageEvent) -> None:
        """Очередь принадлежит циклу событий; из потоков пула кладём через call_soon_threadsafe."""
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or running is loop:
            queue.put_nowait(event)
        else:
            loop.call_soon_threadsafe(queue.put_nowait, event)

    def _apply(self, event: UsageEvent) -> None:
        with self._lock:
            self._counters.apply(event)
            self._dirty = True

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            payload = self._counters.to_dict()
        payload["uniqueClients"] = len(payload.pop("clients"))
        return payload

    def tool_report(self) -> List[Dict[str, Any]]:
        with self._lock:
            by_tool = dict(self._counters.by_tool)
        return [
            {"tool": name, "calls": count}
            for name, count in sorted(by_tool.items(), key=lambda item: item[1], reverse=True)
        ]

    def reset(self) -> None:
        with self._lock:
            self._counters = UsageCounters()
            self._dirty = False

    # --- жизненный цикл ---

    async def start(self) -> None:
        if not self._config.enabled or self._queue is not None:
            return
        self._load()
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._consume(), name="analytics-consumer"),
            asyncio.create_task(self._periodic_flush(), name="analytics-flush"),
        ]
        logger.info("Analytics started (file=%s, interval=%.0fs)", self._config.path, self._config.flush_interval)

    async def stop(self) -> None:
        queue, self._queue = self._queue, None
        if queue is not None:
            while not queue.empty():
                self._apply(queue.get_nowait())
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._loop = None
        await self.flush()

    async def flush(self) -> None:
        with self._lock:
            if not self._dirty:
                return
            snapshot = self._counters.to_dict()
            self._dirty = False
        try:
            await asyncio.to_thread(self._write, snapshot)
        except Exception:
            logger.exception("Failed to persist analytics to %s", self._config.path)
            with self._lock:
                self._dirty = True

    async def _consume(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event = await queue.get()
            self._apply(event)

    async def _periodic_flush(self) -> None:
        interval = self._config.flush_interval or 60.0
        while True:
            await asyncio.sleep(interval)
            await self.flush()

    def _write(self, snapshot: Dict[str, Any]) -> None:
        path = self._config.path
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(snapshot, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(path)

    def _load(self) -> None:
        path = self._config.path
        if not path.exists():
            return
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable analytics file %s: %s", path, exc)
            return
        if isinstance(raw, dict):
            with self._lock:
                self._counters = UsageCounters.from_dict(raw)
            logger.info("Loaded analytics snapshot (%d requests)", self._counters.total_requests)


__all__ = ["UsageCounters", "UsageEvent", "UsageTracker"]
