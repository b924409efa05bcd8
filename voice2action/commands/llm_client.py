"""Chat-completion client for structured command extraction."""

import asyncio
import logging
from typing import Optional, Protocol

import aiohttp

from ..errors import RateLimitError, UpstreamError, UpstreamTimeoutError

logger = logging.getLogger(__name__)


class LanguageModelClient(Protocol):
    """Anything that can turn a system/user prompt pair into a JSON string."""

    async def complete_json(self, system_prompt: str, user_prompt: str,
                            temperature: float = 0.1, max_tokens: int = 2000) -> str:
        ...


class ChatCompletionClient:
    """Sends prompts to an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(self, api_key: str, model: str = "gpt-4-turbo",
                 base_url: str = "https://api.openai.com/v1", timeout: float = 15.0,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize chat completion client.

        Args:
            api_key: OpenAI API key
            model: Chat model to request
            base_url: API root, without trailing slash
            timeout: Hard timeout for one request in seconds
            session: Shared session; a short-lived one is opened per call if omitted
        """
        self.api_key = api_key
        self.model = model
        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout = timeout
        self.session = session

        logger.info(f"ChatCompletionClient initialized with model: {model}")

    async def complete_json(self, system_prompt: str, user_prompt: str,
                            temperature: float = 0.1, max_tokens: int = 2000) -> str:
        """Request a single JSON object and return the raw message content.

        Raises:
            RateLimitError: On HTTP 429
            UpstreamTimeoutError: If no answer arrives within ``timeout``
            UpstreamError: On any other non-200 response or an empty answer
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        data = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        }

        try:
            if self.session is not None:
                return await self._post(self.session, headers, data)
            async with aiohttp.ClientSession() as session:
                return await self._post(session, headers, data)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(f"Chat completion timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Chat completion request failed: {e}") from e

    async def _post(self, session: aiohttp.ClientSession, headers: dict, data: dict) -> str:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with session.post(self.url, headers=headers, json=data, timeout=timeout) as response:
            if response.status == 429:
                raise RateLimitError("Chat completion rate limit exceeded", {"status": 429})
            if response.status in (408, 504):
                raise UpstreamTimeoutError("Chat completion endpoint timed out",
                                           {"status": response.status})
            if response.status != 200:
                error_text = await response.text()
                raise UpstreamError(f"Chat completion API error: {response.status} - {error_text[:200]}",
                                    status=response.status)

            result = await response.json()
            choices = result.get("choices") or []
            content = choices[0].get("message", {}).get("content") if choices else None
            if not content:
                raise UpstreamError("Empty response from chat completion endpoint")
            return content.strip()
