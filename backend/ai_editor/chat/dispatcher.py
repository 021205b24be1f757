"""
Command Dispatcher - Maps decoded commands to session actions.

Topic ownership is checked before any state-changing action. Every error
raised while handling a command is converted to an outbound error frame
here; nothing escapes to the connection.
"""

import logging
from typing import TYPE_CHECKING, List

from .protocol import (
    ChangeTopic, Command, FrameMessage, Invalid, Ping, Prompt, RegenerateMessage, Stop,
    error_frame, messages_frame, pong_frame,
)
from ..core.errors import AuthorizationError, ChatError, DecodeError, NotFoundError
from ..models import Message
from ..storage.conversation_store import ConversationStore

if TYPE_CHECKING:
    from .session import ChatSession

logger = logging.getLogger(__name__)


class CommandDispatcher:
    """Executes commands on behalf of one ChatSession."""

    def __init__(self, session: "ChatSession", store: ConversationStore):
        self.session = session
        self.store = store

    async def dispatch(self, command: Command) -> None:
        """Handle one command, reporting any failure to the client."""
        try:
            if isinstance(command, Ping):
                await self._handle_ping()
            elif isinstance(command, Prompt):
                await self._handle_prompt(command)
            elif isinstance(command, RegenerateMessage):
                await self._handle_regenerate(command)
            elif isinstance(command, ChangeTopic):
                await self._handle_change_topic(command)
            elif isinstance(command, Stop):
                await self._handle_stop()
            elif isinstance(command, Invalid):
                raise DecodeError(command.reason)
        except ChatError as e:
            self.session.log.warning(
                f"{type(command).__name__} rejected: {e.message}",
                extra={"extra_fields": {"error_type": type(e).__name__}}
            )
            await self.session.send(error_frame(e.message))
        except Exception:
            self.session.log.exception(f"Unexpected error handling {type(command).__name__}")
            await self.session.send(error_frame("Internal server error"))

    async def _require_ownership(self, topic_id: str) -> None:
        if not await self.store.user_owns_topic(self.session.user_id, topic_id):
            raise AuthorizationError("User does not own topic")

    async def _handle_ping(self) -> None:
        self.session.acknowledge_liveness()
        await self.session.send(pong_frame())

    async def _handle_change_topic(self, command: ChangeTopic) -> None:
        # An in-flight generation keeps running on its original topic
        await self._require_ownership(command.topic_id)
        messages = await self.store.get_messages(command.topic_id)
        self.session.current_topic_id = command.topic_id
        self.session.log.info(f"Switched to topic {command.topic_id}")
        await self.session.send(messages_frame(messages))

    async def _handle_prompt(self, command: Prompt) -> None:
        await self._require_ownership(command.topic_id)
        await self._record_new_turns(command.history)
        self.session.current_topic_id = command.topic_id
        await self.session.start_generation(list(command.history))

    async def _record_new_turns(self, history: List[FrameMessage]) -> None:
        """
        Store history entries the topic does not have yet (typically the new user turn).

        An entry is already stored if its id is known or its sequence_number
        is taken; clients may resend turns without the ids they were saved under.
        """
        topic_id = history[0].topic_id
        stored = await self.store.get_messages(topic_id)
        known_ids = {m.id for m in stored}
        taken_sequences = {m.sequence_number for m in stored}
        for entry in history:
            if entry.id in known_ids or entry.sequence_number in taken_sequences:
                continue
            fields = entry.model_dump(exclude_none=True)
            saved = await self.store.insert_message(Message(**fields))
            known_ids.add(saved.id)
            taken_sequences.add(saved.sequence_number)

    async def _handle_regenerate(self, command: RegenerateMessage) -> None:
        topic_id = command.topic_id or self.session.current_topic_id
        if topic_id is None:
            raise DecodeError("No topic selected for regeneration")
        await self._require_ownership(topic_id)

        # The old generation would otherwise persist into the truncated topic
        await self.session.cancel_generation()
        remaining = await self.store.delete_message_and_descendants(
            self.session.user_id, command.message_id, topic_id
        )
        if not remaining:
            raise NotFoundError("No messages left to regenerate from")

        self.session.current_topic_id = topic_id
        await self.session.start_generation(remaining)

    async def _handle_stop(self) -> None:
        if await self.session.cancel_generation():
            self.session.log.info("Generation stopped by client")
