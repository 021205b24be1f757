"""
Shared API dependencies - services injected into app.state at startup.
"""

from fastapi import HTTPException, Request, status

from ..chat.orchestrator import CompletionOrchestrator
from ..core.errors import AuthorizationError, ChatError, DecodeError, NotFoundError
from ..storage.conversation_store import ConversationStore


def get_conversation_store(request: Request) -> ConversationStore:
    return request.app.state.conversation_store


def get_orchestrator(request: Request) -> CompletionOrchestrator:
    return request.app.state.orchestrator


def to_http_exception(error: ChatError) -> HTTPException:
    """Map a chat error onto the matching HTTP status."""
    if isinstance(error, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, AuthorizationError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, DecodeError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=error.message)
