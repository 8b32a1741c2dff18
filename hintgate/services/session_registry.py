"""Index of live sessions."""
import asyncio
from typing import Dict, List, Optional
from hintgate.core.config import settings
from hintgate.core.logging import logger
from hintgate.services.session import HintSession


class SessionLimitError(RuntimeError):
    """Raised when the concurrent session limit is reached."""


class SessionRegistry:
    """Looks up sessions by id. Holds no pipeline state of its own."""

    def __init__(self, max_sessions: Optional[int] = None):
        self.max_sessions = max_sessions
        self._sessions: Dict[str, HintSession] = {}
        self._lock = asyncio.Lock()

    async def register(self, session: HintSession) -> None:
        """
        Register a new session.

        Args:
            session: Session to index

        Raises:
            SessionLimitError: too many sessions are already registered
        """
        limit = self.max_sessions if self.max_sessions is not None else settings.max_concurrent_sessions
        async with self._lock:
            if len(self._sessions) >= limit:
                raise SessionLimitError(f"Concurrent session limit ({limit}) reached")
            self._sessions[session.session_id] = session
            logger.info(f"Registered session: {session.session_id}")

    async def unregister(self, session_id: str) -> None:
        async with self._lock:
            if self._sessions.pop(session_id, None) is not None:
                logger.info(f"Unregistered session: {session_id}")

    async def get(self, session_id: str) -> Optional[HintSession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def list_ids(self) -> List[str]:
        async with self._lock:
            return list(self._sessions)

    async def close_all(self) -> None:
        """Destroy and forget every session."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.destroy()
        if sessions:
            logger.info(f"Closed {len(sessions)} sessions")


# Global session registry instance
session_registry = SessionRegistry()
