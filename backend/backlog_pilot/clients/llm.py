"""Completion service client — OpenAI-compatible chat completions.

Works with OpenAI, OpenRouter, Groq or a local Ollama (``/v1``) — any
server that speaks ``POST {base}/chat/completions``.
"""

import httpx
import logging
from typing import Optional

from backlog_pilot.clients.base import ICompletionService
from backlog_pilot.errors import CompletionServiceError, CompletionTimeoutError

logger = logging.getLogger(__name__)


class ChatCompletionClient(ICompletionService):
    """Single-prompt chat completion with fixed model settings."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 300,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._transport = transport

    async def complete(self, prompt: str) -> str:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.base_url}/chat/completions", json=body, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as e:
            raise CompletionTimeoutError(f"Completion service timed out after {self.timeout}s") from e
        except (httpx.HTTPError, ValueError) as e:
            raise CompletionServiceError(f"Completion service unavailable: {e}") from e

        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""
