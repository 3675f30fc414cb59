"""In-process realtime sink.

Each connected client holds a RealtimeSession with its own bounded queue;
whatever transport serves the client (websocket, SSE, long poll) drains
that queue. Pushes never block: a session whose queue is full misses the
message.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from prism.errors import DeliveryBestEffort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeMessage:
    event: str
    payload: dict[str, Any]


@dataclass(eq=False)
class RealtimeSession:
    user_id: str
    queue: asyncio.Queue[RealtimeMessage]
    id: str = field(default_factory=lambda: uuid4().hex[:12])

    async def receive(self) -> RealtimeMessage:
        return await self.queue.get()


class SessionHub:
    """Tracks live sessions per user and fans pushes out to them."""

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._sessions: dict[str, list[RealtimeSession]] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: str) -> RealtimeSession:
        session = RealtimeSession(
            user_id=user_id, queue=asyncio.Queue(maxsize=self._queue_size)
        )
        with self._lock:
            self._sessions.setdefault(user_id, []).append(session)
        logger.debug(
            "realtime_session_connected",
            extra={"user.id": user_id, "session.id": session.id},
        )
        return session

    def disconnect(self, session: RealtimeSession) -> None:
        with self._lock:
            sessions = self._sessions.get(session.user_id, [])
            if session in sessions:
                sessions.remove(session)
            if not sessions:
                self._sessions.pop(session.user_id, None)
        logger.debug(
            "realtime_session_disconnected",
            extra={"user.id": session.user_id, "session.id": session.id},
        )

    def sessions(self, user_id: str) -> list[RealtimeSession]:
        with self._lock:
            return list(self._sessions.get(user_id, ()))

    async def push(self, user_id: str, event: str, payload: dict[str, Any]) -> None:
        """Deliver to every session of `user_id`.

        A user with no sessions is a silent no-op.

        Raises:
            DeliveryBestEffort: If some sessions were full; the others were
                still served.
        """
        message = RealtimeMessage(event=event, payload=payload)
        dropped: list[str] = []
        for session in self.sessions(user_id):
            try:
                session.queue.put_nowait(message)
            except asyncio.QueueFull:
                dropped.append(session.id)

        if dropped:
            raise DeliveryBestEffort(
                f"Realtime push to {user_id!r} dropped for sessions: {', '.join(dropped)}"
            )
