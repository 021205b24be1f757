"""
Shared test fixtures and configuration.
"""

import asyncio
import json
import os
import tempfile
from typing import List, Optional

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="ai_editor_test_data_"))
os.environ.setdefault("LOG_FILE_ENABLED", "false")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("OPENAI_API_KEY", "")

from ai_editor.core.errors import ProviderError  # noqa: E402
from ai_editor.llm.base import LLMMessage, LLMProvider  # noqa: E402
from ai_editor.storage import ConversationStore, LocalStorage  # noqa: E402


class ScriptedProvider(LLMProvider):
    """
    Completion provider that replays a fixed token script.

    error_after: raise ProviderError before yielding the token at this index
    block_after: wait on ``release`` before yielding the token at this index
    """

    name = "scripted"

    def __init__(self, tokens=(), error_after: Optional[int] = None,
                 block_after: Optional[int] = None):
        super().__init__(api_key="test-key", model="test-model")
        self.tokens = list(tokens)
        self.error_after = error_after
        self.block_after = block_after
        self.release = asyncio.Event()
        self.calls: List[List[LLMMessage]] = []
        self.closed_streams = 0

    async def chat_completion_stream(self, messages, temperature=None, max_tokens=None, **kwargs):
        self.calls.append(list(messages))
        try:
            for index, token in enumerate(self.tokens):
                if self.error_after == index:
                    raise ProviderError("Upstream exploded")
                if self.block_after == index:
                    await self.release.wait()
                await asyncio.sleep(0)
                yield token
            if self.error_after is not None and self.error_after >= len(self.tokens):
                raise ProviderError("Upstream exploded")
        finally:
            self.closed_streams += 1


class FakeWebSocket:
    """In-memory stand-in for a starlette WebSocket after accept()."""

    def __init__(self):
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[dict] = []
        self.close_calls: List[int] = []

    async def receive(self) -> dict:
        return await self.inbound.get()

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_calls.append(code)

    def push(self, payload) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        self.inbound.put_nowait({"type": "websocket.receive", "text": text})

    def push_bytes(self, data: bytes) -> None:
        self.inbound.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self) -> None:
        self.inbound.put_nowait({"type": "websocket.disconnect", "code": 1000})

    def frames(self, frame_type: str) -> List[dict]:
        return [f for f in self.sent if f.get("type") == frame_type]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate on the event loop until it holds or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "data"))


@pytest.fixture
def store(storage):
    return ConversationStore(storage)
