"""
LLM Provider Factory - Creates the configured completion provider.
"""

from typing import Any, Optional
from .base import LLMProvider
from .openai_provider import OpenAIProvider


def create_llm_provider(
    provider: str = "openai",
    api_key: str = "",
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    **kwargs
) -> Optional[LLMProvider]:
    """
    Create a provider instance based on configuration.

    Args:
        provider: Provider name ("openai" covers any OpenAI-compatible server)
        api_key: API key for the provider
        model: Model name (uses provider default if not specified)
        base_url: Custom base URL (uses provider default if not specified)
        **kwargs: Additional provider-specific parameters

    Returns:
        LLMProvider instance, or None if api_key is not configured
    """
    if not api_key:
        return None

    if provider == "openai":
        params = {"api_key": api_key}
        if model:
            params["model"] = model
        if base_url:
            params["base_url"] = base_url
        params.update(kwargs)
        return OpenAIProvider(**params)

    raise ValueError(f"Unsupported LLM provider: {provider}")


def create_llm_provider_from_settings(config: Any) -> Optional[LLMProvider]:
    """Build the provider from a Settings object."""
    return create_llm_provider(
        provider=config.llm_provider,
        api_key=config.llm_api_key or config.openai_api_key or "",
        model=config.llm_model,
        base_url=config.llm_base_url,
        default_temperature=config.llm_temperature,
        default_max_tokens=config.llm_max_tokens,
        timeout=config.llm_request_timeout_seconds,
        log_calls=config.log_llm_calls,
    )
