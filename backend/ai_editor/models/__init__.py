"""Models module."""

from .user import User, UserCreate, Token, TokenData
from .message import (
    Message, Role, Topic, TopicCreate, TopicUpdate,
    CreateMessageData, RegenerateMessageData,
)

__all__ = [
    'User', 'UserCreate', 'Token', 'TokenData',
    'Message', 'Role', 'Topic', 'TopicCreate', 'TopicUpdate',
    'CreateMessageData', 'RegenerateMessageData',
]
