"""
Chat Completion Client
======================

Thin async client for an OpenAI-compatible chat-completions API. Used by
the scene-script generator and the emotion analyzer.
"""

import asyncio
import logging
import os
from typing import Optional, List, Dict, Any

import httpx

from ..core.exceptions import ProviderError
from ..core.security import redact_api_key

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o"


class ChatClient:
    """
    Chat-completions client.

    Usage:
        async with ChatClient(api_key="sk-...") as chat:
            text = await chat.complete([
                {"role": "system", "content": "..."},
                {"role": "user", "content": "..."},
            ])
    """

    env_key_name = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or os.getenv(self.env_key_name, "")
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.model = model
        self.timeout = timeout
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

        if not self.api_key:
            logger.warning(
                f"No API key found for chat completions. "
                f"Set {self.env_key_name} environment variable or pass api_key parameter."
            )

    async def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        model: Optional[str] = None,
    ) -> str:
        """
        Run one chat completion and return the first choice's text.

        Args:
            messages: Chat messages (role/content dicts)
            temperature: Sampling temperature
            max_tokens: Completion token limit
            json_mode: Ask for a JSON object response
            model: Override the default model

        Returns:
            The assistant message content

        Raises:
            ProviderError: On transport failure, non-2xx response or empty content
        """
        payload: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        client = await self._get_client()
        try:
            response = await client.post(f"{self.base_url}/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise ProviderError(
                f"Chat completion request failed: {redact_api_key(str(e))}",
                provider="openai",
                recoverable=True,
            ) from e

        if not response.is_success:
            raise ProviderError(
                f"Chat completion failed with status {response.status_code}",
                provider="openai",
                status_code=response.status_code,
                response_body=redact_api_key(response.text),
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
            if content is not None and not isinstance(content, str):
                raise TypeError(f"content is {type(content).__name__}, expected a string")
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"Unexpected chat completion response: {e}",
                provider="openai",
                response_body=response.text,
            ) from e

        if not content:
            raise ProviderError("Chat completion returned no content", provider="openai")

        logger.debug(f"Chat completion returned {len(content)} characters")
        return content

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout),
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    transport=self._transport,
                )
            return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        async with self._client_lock:
            if self._client:
                await self._client.aclose()
                self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
