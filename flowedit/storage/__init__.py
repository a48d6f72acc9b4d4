"""
Storage package - In-memory storage for editing sessions.
"""

from flowedit.storage.memory import SessionStorage, session_storage

__all__ = [
    "SessionStorage",
    "session_storage",
]
