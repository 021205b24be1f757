"""
Chat Session - Protocol state machine for one completion websocket.

Three tasks cooperate per connection: the frame reader (decodes and
dispatches commands one at a time, in arrival order), the liveness watchdog,
and at most one generation task. All session state is mutated from these
tasks on the same event loop, so no locking is needed except around sends.

States:
    CONNECTED  --prompt-->          GENERATING
    GENERATING --stop / done-->     CONNECTED
    any        --liveness timeout-> CLOSING --> CLOSED
"""

import asyncio
import json
import logging
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket, WebSocketDisconnect, status

from .dispatcher import CommandDispatcher
from .orchestrator import CompletionOrchestrator, GenerationHandle, HistoryItem
from .protocol import decode_frame
from ..core.errors import LivenessTimeout
from ..core.logging_config import LoggerAdapter
from ..storage.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTED = "connected"
    GENERATING = "generating"
    CLOSING = "closing"
    CLOSED = "closed"


class ChatSession:
    """
    Owns one accepted websocket for its whole lifetime.

    Usage:
        await websocket.accept()
        await ChatSession(websocket, user_id, store, orchestrator).run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: str,
        store: ConversationStore,
        orchestrator: CompletionOrchestrator,
        liveness_timeout: float = 10.0,
        liveness_tick: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.orchestrator = orchestrator
        self.liveness_timeout = liveness_timeout
        self.liveness_tick = liveness_tick
        self.clock = clock

        self.connection_id = uuid.uuid4().hex[:8]
        self.state = SessionState.CONNECTED
        self.current_topic_id: Optional[str] = None
        self.last_liveness_ack = clock()
        self.generation: Optional[GenerationHandle] = None
        self.close_code: Optional[int] = None

        self._client_gone = False
        self._send_lock = asyncio.Lock()
        self.dispatcher = CommandDispatcher(self, store)
        self.log = LoggerAdapter(logger, {"connection_id": self.connection_id, "user_id": user_id})

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.CONNECTED, SessionState.GENERATING)

    def acknowledge_liveness(self) -> None:
        self.last_liveness_ack = self.clock()

    async def send(self, frame: Dict[str, Any]) -> bool:
        """Send one frame; returns False once the session is closing or the client is gone."""
        if not self.is_open or self._client_gone:
            return False
        async with self._send_lock:
            try:
                await self.websocket.send_text(json.dumps(frame, ensure_ascii=False))
            except (WebSocketDisconnect, RuntimeError) as e:
                self._client_gone = True
                self.log.info(f"Client unreachable, dropping {frame.get('type')} frame: {e}")
                return False
        return True

    # Generation lifecycle

    async def start_generation(self, history: List[HistoryItem]) -> None:
        """Start a generation, cancelling and replacing any active one."""
        await self.cancel_generation()
        if not self.is_open:
            return
        handle = self.orchestrator.start(history, self.send)
        self.generation = handle
        self.state = SessionState.GENERATING
        handle.add_done_callback(self._on_generation_done)
        self.log.bind(generation_id=handle.id).info(
            f"Generation {handle.id} started",
            extra={"extra_fields": {"topic_id": handle.topic_id, "history_length": len(history)}}
        )

    async def cancel_generation(self) -> bool:
        """
        Cancel the active generation, if any, and wait until it has unwound.

        Returns:
            True if a generation was cancelled. A generation that is already
            persisting its reply is allowed to finish and False is returned.
        """
        handle = self.generation
        if handle is None:
            return False
        cancelled = handle.cancel()
        if cancelled:
            self._release_generation(handle)
        await handle.wait()
        self._release_generation(handle)
        return cancelled

    def _release_generation(self, handle: GenerationHandle) -> None:
        if self.generation is handle:
            self.generation = None
            if self.state == SessionState.GENERATING:
                self.state = SessionState.CONNECTED

    def _on_generation_done(self, handle: GenerationHandle) -> None:
        if not handle.task.cancelled() and handle.task.exception() is not None:
            self.log.bind(generation_id=handle.id).error(
                f"Generation {handle.id} crashed",
                exc_info=handle.task.exception(),
            )
        self._release_generation(handle)

    # Connection loop

    async def _read_frames(self) -> None:
        while self.is_open:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                self._client_gone = True
                return
            if message.get("text") is not None:
                data = message["text"]
            else:
                data = message.get("bytes") or b""
            await self.dispatcher.dispatch(decode_frame(data))

    async def _watch_liveness(self) -> None:
        while True:
            await asyncio.sleep(self.liveness_tick)
            if self.clock() - self.last_liveness_ack > self.liveness_timeout:
                raise LivenessTimeout(f"No ping received for {self.liveness_timeout:g}s")

    async def run(self) -> None:
        """Serve the connection until the client leaves or liveness expires."""
        self.log.info("Completion session opened")
        reader = asyncio.create_task(self._read_frames(), name=f"session-{self.connection_id}-reader")
        watchdog = asyncio.create_task(self._watch_liveness(), name=f"session-{self.connection_id}-liveness")
        code, reason = status.WS_1000_NORMAL_CLOSURE, ""
        try:
            done, _ = await asyncio.wait({reader, watchdog}, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                error = task.exception()
                if isinstance(error, LivenessTimeout):
                    self.log.warning(f"Closing connection: {error.message}")
                    code, reason = status.WS_1001_GOING_AWAY, "liveness timeout"
                elif isinstance(error, WebSocketDisconnect):
                    self._client_gone = True
                elif error is not None:
                    self.log.error("Connection failed", exc_info=error)
                    code, reason = status.WS_1011_INTERNAL_ERROR, "internal error"
        finally:
            for task in (reader, watchdog):
                task.cancel()
            await asyncio.gather(reader, watchdog, return_exceptions=True)
            await self.close(code, reason)

    async def close(self, code: int = status.WS_1000_NORMAL_CLOSURE, reason: str = "") -> None:
        """Tear the session down; later calls are no-ops."""
        if not self.is_open:
            return
        self.state = SessionState.CLOSING
        handle = self.generation
        if handle is not None:
            handle.cancel()
            await handle.wait()
            self.generation = None

        if not self._client_gone:
            try:
                await self.websocket.close(code=code, reason=reason)
            except RuntimeError as e:
                # Transport already closed underneath us
                self.log.debug(f"Websocket close skipped: {e}")
        self.close_code = code
        self.state = SessionState.CLOSED
        self.log.info("Completion session closed", extra={"extra_fields": {"close_code": code}})
