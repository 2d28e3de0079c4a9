"""Session registry: the one shared mapping of session id to session state.

Mutations for one id are serialized with a per-id ``asyncio.Lock``;
different ids never contend. Locks live in a weak mapping, so an id
nobody is waiting on costs nothing once its session is gone.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Generic, List, Optional, TypeVar

from ..errors import InvalidState, SessionNotFound

T = TypeVar("T")


class SessionRegistry(Generic[T]):
    def __init__(self) -> None:
        self._sessions: Dict[str, T] = {}
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def get(self, session_id: str) -> T:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def add(self, session_id: str, session: T) -> None:
        if session_id in self._sessions:
            raise InvalidState(f"Session already exists: {session_id}", sessionId=session_id)
        self._sessions[session_id] = session

    def remove(self, session_id: str) -> Optional[T]:
        return self._sessions.pop(session_id, None)

    def lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(session_id)
        async with lock:
            yield


__all__ = ["SessionRegistry"]
