"""
Message API endpoints - topic history and streamed completions over SSE.

Streaming endpoints emit the same frames as the completion websocket, one
Server-Sent Event per frame:
    data: {"type": "chatMessage", "text": "..."}
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse

from .deps import get_conversation_store, get_orchestrator, to_http_exception
from ..chat.orchestrator import CompletionOrchestrator
from ..core.errors import ChatError
from ..models import CreateMessageData, Message, RegenerateMessageData
from ..storage.conversation_store import ConversationStore
from ..utils.auth import get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def stream_completion(orchestrator: CompletionOrchestrator, history: Sequence[Message]) -> StreamingResponse:
    """Run a generation and relay its frames as Server-Sent Events."""

    async def event_generator():
        queue: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()

        async def emit(frame: Dict[str, Any]) -> None:
            await queue.put(frame)

        handle = orchestrator.start(history, emit)
        handle.add_done_callback(lambda _handle: queue.put_nowait(None))
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    break
                yield f"data: {json.dumps(frame, ensure_ascii=False)}\n\n"
        finally:
            if not handle.done:
                # Client went away mid-stream
                logger.info(f"SSE client disconnected, cancelling generation {handle.id}")
                handle.cancel()

    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.get("/{topic_id}", response_model=List[Message])
async def get_all_topic_messages(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Ordered messages of a topic owned by the current user."""
    try:
        await store.get_owned_topic(user_id, topic_id)
        return await store.get_messages(topic_id)
    except ChatError as e:
        raise to_http_exception(e) from e


@router.post("")
async def create_message_completion(
    data: CreateMessageData,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
):
    """Append a user message to a topic and stream the assistant's reply."""
    try:
        await store.get_owned_topic(user_id, data.topic_id)
        history = await store.append_user_message(data.topic_id, data.new_message_content)
    except ChatError as e:
        raise to_http_exception(e) from e

    return stream_completion(orchestrator, history)


@router.post("/regenerate")
async def regenerate_message(
    data: RegenerateMessageData,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
    orchestrator: CompletionOrchestrator = Depends(get_orchestrator),
):
    """Delete a message and everything after it, then stream a fresh reply."""
    try:
        history = await store.delete_message_and_descendants(user_id, data.message_id, data.topic_id)
    except ChatError as e:
        raise to_http_exception(e) from e

    if not history:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No messages left to regenerate from"
        )
    return stream_completion(orchestrator, history)
