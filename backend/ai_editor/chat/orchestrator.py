"""
Completion Orchestrator - Drives one generation from history to persisted reply.

A generation streams tokens from the completion provider, relays each one to
the caller's emit function in arrival order, and persists the assistant
message once the stream is exhausted. Provider failures and cancellation
leave nothing persisted.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .protocol import FrameMessage, StreamToken, chat_message_frame, error_frame, messages_frame
from ..core.errors import ChatError, ProviderError
from ..llm.base import LLMMessage, LLMProvider
from ..models import Message
from ..storage.conversation_store import ConversationStore

logger = logging.getLogger(__name__)

Emit = Callable[[Dict[str, Any]], Awaitable[Any]]
HistoryItem = Union[Message, FrameMessage]


class GenerationHandle:
    """
    Controller for one in-flight generation task.

    cancel() is a request: it flags the generation and cancels its task so the
    provider stream unwinds at its next suspension point. Once the stream is
    exhausted and the reply is being persisted the handle is committing and
    cancel() is refused.
    """

    def __init__(self, topic_id: str):
        self.id = uuid.uuid4().hex[:8]
        self.topic_id = topic_id
        self.task: Optional[asyncio.Task] = None
        self.committing = False
        self._cancel_requested = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    @property
    def done(self) -> bool:
        return self.task is not None and self.task.done()

    def cancel(self) -> bool:
        """Request cancellation. Returns False if the generation can no longer be cancelled."""
        if self.committing or self.done:
            return False
        self._cancel_requested.set()
        if self.task is not None:
            self.task.cancel()
        return True

    def add_done_callback(self, fn: Callable[["GenerationHandle"], None]) -> None:
        self.task.add_done_callback(lambda _task: fn(self))

    async def wait(self) -> Optional[Message]:
        """
        Wait for the task to finish; returns the persisted message, if any.

        Cancelling the waiter does not cancel the generation, so a committing
        reply is always persisted.
        """
        if self.task is None:
            return None
        await asyncio.wait({self.task})
        if self.task.cancelled() or self.task.exception() is not None:
            return None
        return self.task.result()


class CompletionOrchestrator:
    """
    Turns an ordered history into a streamed, persisted assistant message.

    The store is only touched after the provider stream has finished, so no
    storage work overlaps a slow generation.
    """

    def __init__(
        self,
        provider: Optional[LLMProvider],
        store: ConversationStore,
        token_timeout: Optional[float] = 60.0,
    ):
        """
        Args:
            provider: Completion provider, or None when no API key is configured
            store: Conversation store used to persist the reply
            token_timeout: Max seconds to wait for each token; None waits forever
        """
        self.provider = provider
        self.store = store
        self.token_timeout = token_timeout

    def start(self, history: Sequence[HistoryItem], emit: Emit) -> GenerationHandle:
        """Run a generation as a background task and return its handle."""
        topic_id = history[0].topic_id if history else ""
        handle = GenerationHandle(topic_id)
        handle.task = asyncio.create_task(
            self.run(history, emit, handle), name=f"generation-{handle.id}"
        )
        return handle

    async def _next_token(self, stream: AsyncGenerator[str, None]) -> str:
        if self.token_timeout is None:
            return await stream.__anext__()
        try:
            return await asyncio.wait_for(stream.__anext__(), self.token_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Completion provider sent no token for {self.token_timeout:g}s"
            ) from e

    async def _stream_tokens(
        self,
        history: Sequence[HistoryItem],
        emit: Emit,
        handle: Optional[GenerationHandle],
    ) -> Optional[List[StreamToken]]:
        """Relay provider tokens to emit; returns None if cancelled midway."""
        llm_messages = [LLMMessage.text(m.role, m.content) for m in history]
        stream = self.provider.chat_completion_stream(llm_messages)
        tokens: List[StreamToken] = []
        try:
            while True:
                try:
                    text = await self._next_token(stream)
                except StopAsyncIteration:
                    return tokens
                if handle is not None and handle.cancelled:
                    return None
                token = StreamToken(text=text, index=len(tokens) + 1)
                tokens.append(token)
                await emit(chat_message_frame(token.text))
        finally:
            await stream.aclose()

    async def run(
        self,
        history: Sequence[HistoryItem],
        emit: Emit,
        handle: Optional[GenerationHandle] = None,
    ) -> Optional[Message]:
        """
        Drive one generation to completion.

        Args:
            history: Ordered, non-empty conversation history of one topic
            emit: Coroutine receiving each outbound frame
            handle: Controller used to observe cancellation requests

        Returns:
            The persisted assistant message, or None if the generation failed
            or was cancelled
        """
        if not history:
            await emit(error_frame("Cannot generate a reply for an empty conversation"))
            return None
        if self.provider is None:
            await emit(error_frame("Completion provider not configured"))
            return None

        topic_id = history[0].topic_id
        generation_id = handle.id if handle else "-"
        start_time = time.time()
        logger.info(
            f"Generation {generation_id} started for topic {topic_id}",
            extra={"extra_fields": {
                "generation_id": generation_id,
                "topic_id": topic_id,
                "history_length": len(history),
            }}
        )

        try:
            tokens = await self._stream_tokens(history, emit, handle)
        except ProviderError as e:
            logger.warning(
                f"Generation {generation_id} aborted: {e}",
                extra={"extra_fields": {"generation_id": generation_id, "topic_id": topic_id}}
            )
            await emit(error_frame(e.message))
            return None

        if tokens is None or (handle is not None and handle.cancelled):
            logger.info(f"Generation {generation_id} cancelled")
            return None

        if handle is not None:
            handle.committing = True

        message = Message.from_details(
            content="".join(t.text for t in tokens),
            topic_id=topic_id,
            sequence_number=len(history) + 1,
            role="assistant",
            completion_tokens=len(tokens),
        )
        try:
            saved = await self.store.insert_message(message)
            messages = await self.store.get_messages(topic_id)
        except ChatError as e:
            logger.error(
                f"Generation {generation_id} could not be persisted: {e}",
                extra={"extra_fields": {"generation_id": generation_id, "topic_id": topic_id}}
            )
            await emit(error_frame(f"Failed to save completion: {e.message}"))
            return None

        await emit(messages_frame(messages))
        logger.info(
            f"Generation {generation_id} completed",
            extra={"extra_fields": {
                "generation_id": generation_id,
                "topic_id": topic_id,
                "message_id": saved.id,
                "completion_tokens": saved.completion_tokens,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            }}
        )
        return saved
