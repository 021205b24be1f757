"""
Exception hierarchy for the chat core.

Every error raised while handling a command is a ChatError so the session
can turn it into an outbound error frame. Only LivenessTimeout is fatal
for a connection.
"""

from typing import Optional


class ChatError(Exception):
    """Base exception for all chat errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DecodeError(ChatError):
    """Inbound frame was malformed or named an unsupported command."""


class AuthorizationError(ChatError):
    """The session user does not own the requested topic."""


class NotFoundError(ChatError):
    """A topic or message does not exist."""


class ProviderError(ChatError):
    """The completion provider failed or returned malformed data."""

    def __init__(self, message: str, *, provider: Optional[str] = None,
                 status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class PersistenceError(ChatError):
    """The conversation store failed to save or delete data."""


class LivenessTimeout(ChatError):
    """No liveness acknowledgement arrived within the timeout window."""
