"""API module."""

from .auth import router as auth_router
from .topics import router as topics_router
from .messages import router as messages_router
from .completion_ws import router as completion_router

__all__ = ['auth_router', 'topics_router', 'messages_router', 'completion_router']
