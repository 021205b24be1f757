"""
LLM Provider Base - Abstract base for chat-completion providers.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List, AsyncGenerator
from dataclasses import dataclass


@dataclass
class LLMMessage:
    """A role/content pair in the provider's wire format."""
    role: str  # "system", "user", "assistant"
    content: str

    @staticmethod
    def text(role: str, text: str) -> "LLMMessage":
        """Create a text-only message."""
        return LLMMessage(role=role, content=text)


class LLMProvider(ABC):
    """
    Abstract base class for completion providers.
    Configuration is injected at construction; providers never read the environment.
    """

    name = "base"

    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None,
                 default_temperature: float = 0.7, default_max_tokens: Optional[int] = None,
                 timeout: float = 120.0, log_calls: bool = True):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self.timeout = timeout
        self.log_calls = log_calls

    @abstractmethod
    def chat_completion_stream(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> AsyncGenerator[str, None]:
        """
        Stream chat completion tokens.

        The returned async generator owns the underlying HTTP connection;
        closing it early (``aclose()``) releases the connection.

        Args:
            messages: Ordered conversation history
            temperature: Sampling temperature override
            max_tokens: Max tokens override
            **kwargs: Additional provider-specific parameters

        Yields:
            str: Individual non-empty text increments from the provider

        Raises:
            ProviderError: On transport failure, HTTP error status, or malformed chunks
        """
        pass

    def _format_messages(self, messages: List[LLMMessage]) -> List[Dict[str, Any]]:
        """Convert LLMMessage list to API-compatible format."""
        return [{"role": m.role, "content": m.content} for m in messages]
