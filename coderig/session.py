# Coderig - Agent Tool Execution Core
# Copyright (c) 2024-2026 Matthew Bright
# Licensed under the MIT License. See LICENSE file for details.

"""Session records owned by the running agent."""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, replace

from .pubsub import Broker, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    id: str
    title: str = ""
    todos: str = ""
    created_at: int = 0
    updated_at: int = 0


class SessionService:
    """In-memory session store."""

    def __init__(self, history=None):
        self.broker = Broker()
        self._history = history
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def subscribe(self, ctx=None):
        return self.broker.subscribe(ctx)

    def create(self, title="", session_id=None) -> Session:
        now = int(time.time() * 1000)
        session = Session(
            id=session_id or uuid.uuid4().hex,
            title=title,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._sessions[session.id] = session
            self.broker.publish(EventType.CREATED, session)
        logger.debug("Created session %s", session.id)
        return session

    def get(self, session_id) -> Session:
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"session not found: {session_id}")
            return self._sessions[session_id]

    def save(self, session: Session) -> Session:
        with self._lock:
            saved = replace(session, updated_at=int(time.time() * 1000))
            self._sessions[saved.id] = saved
            self.broker.publish(EventType.UPDATED, saved)
            return saved

    def list(self) -> list[Session]:
        with self._lock:
            return sorted(self._sessions.values(), key=lambda s: s.created_at)

    def delete(self, session_id):
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise KeyError(f"session not found: {session_id}")
            self.broker.publish(EventType.DELETED, session)
        if self._history is not None:
            self._history.delete_session_files(session_id)
