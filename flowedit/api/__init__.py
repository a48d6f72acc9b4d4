"""
API package - FastAPI routes and schemas.
"""

from flowedit.api.routes import catalog, sessions, websocket

__all__ = ["catalog", "sessions", "websocket"]
