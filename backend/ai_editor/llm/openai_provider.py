"""
OpenAI-compatible chat completion provider.
Streams tokens from the /chat/completions endpoint using Server-Sent Events.
"""

import httpx
import json
import logging
import time
from typing import Optional, List, Dict, Any, AsyncGenerator

from .base import LLMProvider, LLMMessage
from ..core.errors import ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    Provider for OpenAI and any server speaking the same chat/completions API.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        default_temperature: float = 0.7,
        default_max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        log_calls: bool = True,
    ):
        super().__init__(api_key, model, base_url.rstrip("/"), default_temperature,
                         default_max_tokens, timeout, log_calls)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, messages: List[LLMMessage], temperature: Optional[float],
                       max_tokens: Optional[int], **kwargs) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": kwargs.get("model", self.model),
            "messages": self._format_messages(messages),
            "temperature": temperature if temperature is not None else self.default_temperature,
            "stream": True,
        }
        if max_tokens or self.default_max_tokens:
            payload["max_tokens"] = max_tokens or self.default_max_tokens
        return payload

    @staticmethod
    def _parse_chunk(data_str: str) -> Optional[str]:
        """Extract the content delta from one SSE data payload."""
        try:
            chunk = json.loads(data_str)
        except json.JSONDecodeError as e:
            raise ProviderError(f"Malformed stream chunk: {data_str[:200]}", provider="openai") from e

        if "error" in chunk:
            message = chunk["error"].get("message", "unknown error") if isinstance(chunk["error"], dict) else chunk["error"]
            raise ProviderError(f"Provider reported an error: {message}", provider="openai")

        choices = chunk.get("choices")
        if not choices:
            # Usage-only trailer chunks carry no choices
            return None
        delta = choices[0].get("delta") or {}
        return delta.get("content") or None

    async def chat_completion_stream(
        self,
        messages: List[LLMMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> AsyncGenerator[str, None]:
        """Stream chat completion tokens from the Chat Completions endpoint."""
        start_time = time.time()
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(messages, temperature, max_tokens, **kwargs)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"LLM API stream starting: provider=openai, model={payload['model']}, "
                f"temperature={payload['temperature']}, {len(messages)} messages"
            )

        token_count = 0
        content_length = 0

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream('POST', url, json=payload, headers=self._get_headers()) as response:
                    if response.status_code >= 400:
                        body = (await response.aread()).decode("utf-8", errors="ignore")
                        raise ProviderError(
                            f"Completion request failed with status {response.status_code}: {body[:500]}",
                            provider="openai",
                            status_code=response.status_code,
                        )

                    async for line in response.aiter_lines():
                        # SSE format: "data: {json}" or "data: [DONE]"
                        if not line.startswith("data:"):
                            continue
                        data_str = line[5:].strip()
                        if data_str == "[DONE]":
                            break

                        content = self._parse_chunk(data_str)
                        if content:
                            token_count += 1
                            content_length += len(content)
                            yield content

        except httpx.HTTPError as e:
            self._log_failure(payload, start_time, e)
            raise ProviderError(f"Completion stream failed: {e}", provider="openai") from e
        except ProviderError as e:
            self._log_failure(payload, start_time, e)
            raise

        if self.log_calls:
            logger.info(
                "LLM API stream completed",
                extra={"extra_fields": {
                    "provider": "openai",
                    "model": payload["model"],
                    "completion_tokens": token_count,
                    "duration_ms": round((time.time() - start_time) * 1000, 2),
                    "content_length": content_length,
                }}
            )

    def _log_failure(self, payload: Dict[str, Any], start_time: float, error: Exception) -> None:
        logger.error(
            f"LLM API stream failed: {error}",
            extra={"extra_fields": {
                "provider": "openai",
                "model": payload.get("model"),
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "error": str(error),
            }}
        )
