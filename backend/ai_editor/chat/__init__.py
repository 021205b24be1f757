"""Chat module - completion websocket protocol, orchestration and sessions."""

from .protocol import (
    Command, Ping, Prompt, RegenerateMessage, ChangeTopic, Stop, Invalid,
    FrameMessage, StreamToken, decode_frame,
)
from .orchestrator import CompletionOrchestrator, GenerationHandle
from .dispatcher import CommandDispatcher
from .session import ChatSession, SessionState

__all__ = [
    'Command', 'Ping', 'Prompt', 'RegenerateMessage', 'ChangeTopic', 'Stop', 'Invalid',
    'FrameMessage', 'StreamToken', 'decode_frame',
    'CompletionOrchestrator', 'GenerationHandle', 'CommandDispatcher',
    'ChatSession', 'SessionState',
]
