"""
Topic API endpoints - create, list, rename and delete conversation topics.
"""

from typing import List
from fastapi import APIRouter, Depends, status

from .deps import get_conversation_store, to_http_exception
from ..core.errors import ChatError
from ..models import Topic, TopicCreate, TopicUpdate
from ..storage.conversation_store import ConversationStore
from ..utils.auth import get_current_user_id

router = APIRouter(prefix="/topics", tags=["topics"])


@router.post("", response_model=Topic, status_code=status.HTTP_201_CREATED)
async def create_topic(
    data: TopicCreate,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Create a topic owned by the current user."""
    try:
        return await store.create_topic(user_id, data.name)
    except ChatError as e:
        raise to_http_exception(e) from e


@router.get("", response_model=List[Topic])
async def list_topics(
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """List the current user's topics, oldest first."""
    return await store.list_topics(user_id)


@router.put("/{topic_id}", response_model=Topic)
async def rename_topic(
    topic_id: str,
    data: TopicUpdate,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Rename a topic."""
    try:
        return await store.rename_topic(user_id, topic_id, data.name)
    except ChatError as e:
        raise to_http_exception(e) from e


@router.delete("/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_topic(
    topic_id: str,
    user_id: str = Depends(get_current_user_id),
    store: ConversationStore = Depends(get_conversation_store),
):
    """Delete a topic and all of its messages."""
    try:
        await store.delete_topic(user_id, topic_id)
    except ChatError as e:
        raise to_http_exception(e) from e
