"""
In-Memory Storage for editing sessions.

Keeps every open editing session by id. Can be replaced with a persistent
implementation that stores the exported flow documents.
"""

from typing import Dict, List, Optional
import asyncio
import logging
import uuid

from flowedit.catalog.registry import ModuleCatalog
from flowedit.engine.session import EditingSession


logger = logging.getLogger(__name__)


class SessionStorage:
    """
    In-memory storage for editing sessions.

    The map of sessions is guarded by its own lock; each session carries a
    separate lock for edits to its graph.
    """

    def __init__(self, catalog: Optional[ModuleCatalog] = None):
        self._sessions: Dict[str, EditingSession] = {}
        self._lock = asyncio.Lock()
        self._catalog = catalog

    async def create(self, name: str = "", session_id: Optional[str] = None) -> EditingSession:
        """
        Open a new, empty session.

        Args:
            name: Display name
            session_id: Explicit id (generated if omitted)

        Returns:
            The new session

        Raises:
            ValueError: If a session with that id already exists
        """
        async with self._lock:
            session_id = session_id or str(uuid.uuid4())
            if session_id in self._sessions:
                raise ValueError(f"Session '{session_id}' already exists")
            kwargs = {"catalog": self._catalog} if self._catalog is not None else {}
            session = EditingSession(session_id=session_id, name=name or session_id, **kwargs)
            self._sessions[session_id] = session
            logger.info(f"Opened session {session_id}")
            return session

    async def get(self, session_id: str) -> Optional[EditingSession]:
        """Get a session by ID."""
        async with self._lock:
            return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> bool:
        """Close a session."""
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                logger.info(f"Closed session {session_id}")
                return True
            return False

    async def list_all(self) -> List[EditingSession]:
        """List all open sessions."""
        async with self._lock:
            return list(self._sessions.values())

    async def exists(self, session_id: str) -> bool:
        async with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


# Global storage instance
session_storage = SessionStorage()
