"""Реестр MCP-сессий Streamable HTTP и их потоков доставки."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger("tracker_mcp.core.session")

Clock = Callable[[], float]

_CLOSED = object()


class SessionStream:
    """Открытый канал SSE одной сессии.

    Канал привязан к циклу событий, в котором был создан (GET-запрос), а писать
    в него можно из любого потока: обработчики инструментов выполняются в
    threadpool, поэтому `send`/`close` проходят через `call_soon_threadsafe`.
    После `close` читатель получает все ранее отправленные сообщения, затем None.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: Dict[str, Any]) -> bool:
        """Поставить JSON-RPC сообщение в очередь; False, если канал уже закрыт."""
        with self._lock:
            if self._closed:
                return False
            return self._schedule(message)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._schedule(_CLOSED)

    async def receive(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Дождаться следующего сообщения.

        Возвращает None, когда канал закрыт; по истечении `timeout` поднимает
        asyncio.TimeoutError (используется для keep-alive кадров).
        """
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            # оставляем маркер для повторных читателей
            self._queue.put_nowait(_CLOSED)
            return None
        return item

    def _schedule(self, item: Any) -> bool:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            logger.debug("Event loop closed, dropping stream item")
            return False
        return True


@dataclass
class Session:
    """Состояние активной MCP-сессии."""

    id: str
    stream: SessionStream
    created_at: float
    last_activity_at: float


class SessionRegistry:
    """Единственный источник истины о существовании и сроке жизни сессий.

    Все операции O(1) над словарём под одной блокировкой; закрытие потоков
    выполняется вне критической секции. Отсутствие сессии выражается через
    None, исключения для управления потоком не используются.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}

    def create(self, stream: SessionStream) -> str:
        with self._lock:
            session_id = str(uuid4())
            while session_id in self._sessions:
                session_id = str(uuid4())
            now = self._clock()
            self._sessions[session_id] = Session(
                id=session_id,
                stream=stream,
                created_at=now,
                last_activity_at=now,
            )
        logger.info("Created session %s", session_id)
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[Session]:
        """Найти сессию и обновить отметку активности."""
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.last_activity_at = max(session.last_activity_at, self._clock())
        return session

    def remove(self, session_id: Optional[str]) -> None:
        if not session_id:
            return
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return
        session.stream.close()
        logger.info("Removed session %s", session_id)

    def sweep_expired(self, max_age: float) -> int:
        with self._lock:
            now = self._clock()
            expired = [
                session
                for session in self._sessions.values()
                if now - session.last_activity_at > max_age
            ]
            for session in expired:
                del self._sessions[session.id]
        for session in expired:
            session.stream.close()
        if expired:
            logger.info("Swept %d expired session(s)", len(expired))
        return len(expired)

    def close_all(self) -> int:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.stream.close()
        if sessions:
            logger.info("Closed %d session(s) on shutdown", len(sessions))
        return len(sessions)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)


__all__ = ["Clock", "Session", "SessionRegistry", "SessionStream"]
