"""Хранилище и утилиты для управления сессиями MCP."""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Any, Dict, Optional
from uuid import uuid4

from keywords_mcp.core.config import SESSION_TTL_SECONDS
from keywords_mcp.models.json_rpc import SessionState

logger = logging.getLogger("keywords_mcp.core.session")


class SessionManager:
    """Потокобезопасный реестр живых сессий.

    Сессия создаётся только на `initialize` без заголовка сессии и живёт до явного
    DELETE или остановки процесса. При `ttl_seconds > 0` простаивающие сессии
    считаются отсутствующими и вычищаются лениво.
    """

    def __init__(self, *, ttl_seconds: float = 0.0) -> None:
        self._sessions: Dict[str, SessionState] = {}
        self._lock = Lock()
        self.ttl_seconds = ttl_seconds

    def create(
        self,
        *,
        client_info: Optional[Dict[str, Any]] = None,
        capabilities: Optional[Dict[str, Any]] = None,
    ) -> SessionState:
        with self._lock:
            self._prune_locked()
            session_id = uuid4().hex
            while session_id in self._sessions:
                session_id = uuid4().hex
            now = time.time()
            session = SessionState(
                id=session_id,
                created_at=now,
                last_seen_at=now,
                client_info=client_info or {},
                capabilities=capabilities or {},
            )
            self._sessions[session_id] = session
        logger.info("Created session %s... (active=%d)", session_id[:8], len(self._sessions))
        return session

    def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            now = time.time()
            if self._is_expired(session, now):
                del self._sessions[session_id]
                logger.info("Session %s... expired", session_id[:8])
                return None
            session.last_seen_at = now
            return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is None:
            return False
        logger.info("Terminated session %s...", session_id[:8])
        return True

    def count(self) -> int:
        with self._lock:
            self._prune_locked()
            return len(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def _is_expired(self, session: SessionState, now: float) -> bool:
        return self.ttl_seconds > 0 and now - session.last_seen_at > self.ttl_seconds

    def _prune_locked(self) -> None:
        if self.ttl_seconds <= 0:
            return
        now = time.time()
        expired = [sid for sid, session in self._sessions.items() if self._is_expired(session, now)]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Evicted %d idle sessions", len(expired))


SESSIONS = SessionManager(ttl_seconds=SESSION_TTL_SECONDS)

__all__ = ["SESSIONS", "SessionManager"]
