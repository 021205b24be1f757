"""
Conversation Store - Persistence for topics and their messages.

Layout inside the storage backend:
    topics/<topic_id>/topic.json      topic record
    topics/<topic_id>/messages.json   messages ordered by sequence_number
"""

import asyncio
import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List

from pydantic import ValidationError

from .interface import StorageInterface
from ..core.errors import AuthorizationError, NotFoundError, PersistenceError
from ..models import Message, Topic

logger = logging.getLogger(__name__)


class ConversationStore:
    """
    Topic and message persistence used by the chat core and the REST API.

    Writes to one topic are serialized by a per-topic lock; no lock is held
    while callers wait on anything other than storage I/O.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.topics_dir = "topics"
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _topic_path(self, topic_id: str) -> str:
        return f"{self.topics_dir}/{topic_id}/topic.json"

    def _messages_path(self, topic_id: str) -> str:
        return f"{self.topics_dir}/{topic_id}/messages.json"

    async def _save_topic(self, topic: Topic) -> None:
        if not await self.storage.save(self._topic_path(topic.id), topic.model_dump_json(indent=2)):
            raise PersistenceError(f"Failed to save topic {topic.id}")

    async def _load_messages(self, topic_id: str) -> List[Message]:
        content = await self.storage.load(self._messages_path(topic_id))
        if content is None:
            return []
        try:
            raw = json.loads(content.decode('utf-8'))
            messages = [Message.model_validate(item) for item in raw]
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            raise PersistenceError(f"Corrupt message log for topic {topic_id}") from e
        return sorted(messages, key=lambda m: m.sequence_number)

    async def _save_messages(self, topic_id: str, messages: List[Message]) -> None:
        ordered = sorted(messages, key=lambda m: m.sequence_number)
        payload = json.dumps([m.model_dump(mode="json") for m in ordered], indent=2, ensure_ascii=False)
        if not await self.storage.save(self._messages_path(topic_id), payload):
            raise PersistenceError(f"Failed to save messages for topic {topic_id}")

    # Topics

    async def create_topic(self, user_id: str, name: str) -> Topic:
        """Create and persist a new topic owned by user_id."""
        topic = Topic(user_id=user_id, name=name)
        await self._save_topic(topic)
        logger.info(f"Topic created: {topic.id}", extra={"extra_fields": {
            "topic_id": topic.id, "user_id": user_id,
        }})
        return topic

    async def get_topic(self, topic_id: str) -> Topic:
        """
        Load a topic.

        Raises:
            NotFoundError: If the topic does not exist
        """
        content = await self.storage.load(self._topic_path(topic_id))
        if content is None:
            raise NotFoundError(f"Topic {topic_id} not found")
        try:
            return Topic.model_validate_json(content)
        except ValidationError as e:
            raise PersistenceError(f"Corrupt topic record {topic_id}") from e

    async def list_topics(self, user_id: str) -> List[Topic]:
        """List a user's topics, oldest first."""
        files = await self.storage.list(self.topics_dir, pattern="topic.json", recursive=True)
        topics = []
        for file_path in files:
            content = await self.storage.load(file_path)
            if content is None:
                continue
            try:
                topic = Topic.model_validate_json(content)
            except ValidationError:
                logger.warning(f"Skipping corrupt topic record {file_path}")
                continue
            if topic.user_id == user_id:
                topics.append(topic)
        return sorted(topics, key=lambda t: t.created_at)

    async def user_owns_topic(self, user_id: str, topic_id: str) -> bool:
        """True if the topic exists and belongs to user_id."""
        try:
            topic = await self.get_topic(topic_id)
        except NotFoundError:
            return False
        return topic.user_id == user_id

    async def get_owned_topic(self, user_id: str, topic_id: str) -> Topic:
        """
        Load a topic and check ownership.

        Raises:
            NotFoundError: If the topic does not exist
            AuthorizationError: If another user owns it
        """
        topic = await self.get_topic(topic_id)
        if topic.user_id != user_id:
            raise AuthorizationError("User does not own topic")
        return topic

    async def rename_topic(self, user_id: str, topic_id: str, name: str) -> Topic:
        """Rename a topic owned by user_id."""
        async with self._locks[topic_id]:
            topic = await self.get_owned_topic(user_id, topic_id)
            renamed = topic.model_copy(update={"name": name, "updated_at": datetime.now(timezone.utc)})
            await self._save_topic(renamed)
        return renamed

    async def delete_topic(self, user_id: str, topic_id: str) -> None:
        """Delete a topic owned by user_id together with its messages."""
        async with self._locks[topic_id]:
            await self.get_owned_topic(user_id, topic_id)
            await self.storage.delete(self._messages_path(topic_id))
            if not await self.storage.delete(self._topic_path(topic_id)):
                raise PersistenceError(f"Failed to delete topic {topic_id}")
        self._locks.pop(topic_id, None)
        logger.info(f"Topic deleted: {topic_id}", extra={"extra_fields": {
            "topic_id": topic_id, "user_id": user_id,
        }})

    # Messages

    async def get_messages(self, topic_id: str) -> List[Message]:
        """Messages of a topic ordered by sequence_number."""
        await self.get_topic(topic_id)
        return await self._load_messages(topic_id)

    async def insert_message(self, message: Message) -> Message:
        """
        Persist a new message.

        Raises:
            NotFoundError: If the message's topic does not exist
            PersistenceError: If a message with the same id exists or the write fails
        """
        async with self._locks[message.topic_id]:
            await self.get_topic(message.topic_id)
            messages = await self._load_messages(message.topic_id)
            if any(m.id == message.id for m in messages):
                raise PersistenceError(f"Message {message.id} already exists")
            messages.append(message)
            await self._save_messages(message.topic_id, messages)
        logger.debug(f"Message inserted: {message.id}", extra={"extra_fields": {
            "topic_id": message.topic_id,
            "role": message.role,
            "sequence_number": message.sequence_number,
        }})
        return message

    async def append_user_message(self, topic_id: str, content: str) -> List[Message]:
        """
        Append a user message after the last one in the topic.

        Returns:
            The topic's full ordered history including the new message
        """
        async with self._locks[topic_id]:
            await self.get_topic(topic_id)
            messages = await self._load_messages(topic_id)
            next_sequence = messages[-1].sequence_number + 1 if messages else 1
            messages.append(Message.from_details(content, topic_id, next_sequence, "user"))
            await self._save_messages(topic_id, messages)
        return messages

    async def delete_message_and_descendants(
        self,
        user_id: str,
        message_id: str,
        topic_id: str
    ) -> List[Message]:
        """
        Delete a message and every message after it in sequence.

        Returns:
            The remaining ordered history

        Raises:
            NotFoundError: If the topic or message does not exist
            AuthorizationError: If user_id does not own the topic
        """
        async with self._locks[topic_id]:
            await self.get_owned_topic(user_id, topic_id)
            messages = await self._load_messages(topic_id)
            target = next((m for m in messages if m.id == message_id), None)
            if target is None:
                raise NotFoundError(f"Message {message_id} not found")
            remaining = [m for m in messages if m.sequence_number < target.sequence_number]
            await self._save_messages(topic_id, remaining)

        logger.info(
            f"Deleted {len(messages) - len(remaining)} message(s) from topic {topic_id}",
            extra={"extra_fields": {"topic_id": topic_id, "message_id": message_id}}
        )
        return remaining
