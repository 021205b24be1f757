"""LLM module - provides the completion provider interface and implementations."""

from .base import LLMProvider, LLMMessage
from .openai_provider import OpenAIProvider
from .factory import create_llm_provider, create_llm_provider_from_settings

__all__ = [
    'LLMProvider',
    'LLMMessage',
    'OpenAIProvider',
    'create_llm_provider',
    'create_llm_provider_from_settings',
]
