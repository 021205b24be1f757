"""Core module - logging setup and the error taxonomy."""

from .errors import (
    ChatError,
    DecodeError,
    AuthorizationError,
    NotFoundError,
    ProviderError,
    PersistenceError,
    LivenessTimeout,
)

__all__ = [
    'ChatError', 'DecodeError', 'AuthorizationError', 'NotFoundError',
    'ProviderError', 'PersistenceError', 'LivenessTimeout',
]
