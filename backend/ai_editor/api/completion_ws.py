"""
Completion websocket endpoint.

Browsers cannot set headers on websocket requests, so the JWT travels as the
``token`` query parameter.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, status

from ..chat.session import ChatSession
from ..config import settings
from ..utils.auth import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["completion"])


@router.websocket("/ws/completion")
async def completion_websocket(websocket: WebSocket, token: Optional[str] = Query(None)):
    """Serve one chat session over a persistent websocket."""
    token_data = decode_access_token(token) if token else None
    if token_data is None or token_data.user_id is None:
        logger.warning("Rejected completion websocket with missing or invalid token")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = ChatSession(
        websocket,
        user_id=token_data.user_id,
        store=websocket.app.state.conversation_store,
        orchestrator=websocket.app.state.orchestrator,
        liveness_timeout=settings.liveness_timeout_seconds,
        liveness_tick=settings.liveness_tick_seconds,
    )
    await session.run()
