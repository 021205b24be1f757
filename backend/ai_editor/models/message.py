"""
Conversation Models - Topics and the messages they own.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal, Optional
from pydantic import BaseModel, Field

Role = Literal["user", "assistant", "system"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Message(BaseModel):
    """One turn in a topic, ordered by sequence_number."""
    id: str = Field(default_factory=_new_id)
    topic_id: str
    role: Role
    content: str
    sequence_number: int
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)

    class Config:
        frozen = True

    @classmethod
    def from_details(
        cls,
        content: str,
        topic_id: str,
        sequence_number: int,
        role: Role,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
    ) -> "Message":
        """Build a new message with a fresh id and timestamp."""
        return cls(
            content=content,
            topic_id=topic_id,
            sequence_number=sequence_number,
            role=role,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )


class Topic(BaseModel):
    """A named conversation thread owned by a user."""
    id: str = Field(default_factory=_new_id)
    user_id: str
    name: str
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TopicCreate(BaseModel):
    """Topic creation request."""
    name: str = Field(..., min_length=1, max_length=200)


class TopicUpdate(BaseModel):
    """Topic rename request."""
    name: str = Field(..., min_length=1, max_length=200)


class CreateMessageData(BaseModel):
    """Request body for appending a user message and streaming a reply."""
    new_message_content: str = Field(..., min_length=1)
    topic_id: str


class RegenerateMessageData(BaseModel):
    """Request body for regenerating from a message onwards."""
    message_id: str
    topic_id: str
