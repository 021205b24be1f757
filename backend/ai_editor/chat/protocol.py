"""
Completion websocket wire protocol.

Inbound text frames are JSON objects:
    {"command": str, "previous_messages"?: [...], "topic_id"?: str, "message_id"?: str}

Each frame decodes to exactly one Command. Anything that cannot be decoded
becomes Invalid(reason); decoding never raises.

Outbound frames are JSON objects tagged by "type":
    {"type": "messages", "messages": [...]}
    {"type": "chatMessage", "text": str}
    {"type": "error", "message": str}
    {"type": "pong"}
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ValidationError

from ..models import Message, Role


class FrameMessage(BaseModel):
    """A history entry as sent by the client; id is absent for unsaved turns."""
    id: Optional[str] = None
    topic_id: str
    role: Role
    content: str
    sequence_number: int
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    created_at: Optional[datetime] = None


class InboundFrame(BaseModel):
    command: str
    previous_messages: Optional[List[FrameMessage]] = None
    topic_id: Optional[str] = None
    message_id: Optional[str] = None


@dataclass(frozen=True)
class Ping:
    pass


@dataclass(frozen=True)
class Prompt:
    history: Tuple[FrameMessage, ...]

    @property
    def topic_id(self) -> str:
        return self.history[0].topic_id


@dataclass(frozen=True)
class RegenerateMessage:
    message_id: str
    topic_id: Optional[str] = None


@dataclass(frozen=True)
class ChangeTopic:
    topic_id: str


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Invalid:
    reason: str


Command = Union[Ping, Prompt, RegenerateMessage, ChangeTopic, Stop, Invalid]


@dataclass(frozen=True)
class StreamToken:
    """One provider increment and its 1-based position in the generation."""
    text: str
    index: int


def decode_frame(data: Union[str, bytes]) -> Command:
    """Classify one inbound frame as a Command."""
    if isinstance(data, (bytes, bytearray)):
        return Invalid("Binary not a valid operation")

    try:
        raw = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return Invalid("Invalid message")
    if not isinstance(raw, dict):
        return Invalid("Invalid message")

    try:
        frame = InboundFrame.model_validate(raw)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        return Invalid(f"Invalid message: {fields}")

    command = frame.command
    if command == "ping":
        return Ping()
    if command == "prompt":
        if not frame.previous_messages:
            return Invalid("Missing properties")
        topic_ids = {m.topic_id for m in frame.previous_messages}
        if len(topic_ids) > 1:
            return Invalid("Previous messages must belong to a single topic")
        return Prompt(tuple(frame.previous_messages))
    if command == "regenerateMessage":
        if not frame.message_id:
            return Invalid("Missing properties")
        return RegenerateMessage(frame.message_id, frame.topic_id)
    if command == "changeTopic":
        if not frame.topic_id:
            return Invalid("Missing properties")
        return ChangeTopic(frame.topic_id)
    if command == "stop":
        return Stop()
    return Invalid(f"Unknown command: {command}")


def messages_frame(messages: Sequence[Message]) -> Dict[str, Any]:
    return {"type": "messages", "messages": [m.model_dump(mode="json") for m in messages]}


def chat_message_frame(text: str) -> Dict[str, Any]:
    return {"type": "chatMessage", "text": text}


def error_frame(message: str) -> Dict[str, Any]:
    return {"type": "error", "message": message}


def pong_frame() -> Dict[str, Any]:
    return {"type": "pong"}
