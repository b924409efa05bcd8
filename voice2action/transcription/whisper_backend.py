"""Whisper transcription backend over the OpenAI-compatible HTTP API."""

import asyncio
import logging
from typing import Any, Dict

import aiohttp

from .base import AbstractTranscriptionBackend
from ..errors import RateLimitError, UpstreamError, UpstreamTimeoutError
from ..models.audio import TranscriptionOptions

logger = logging.getLogger(__name__)


class WhisperBackend(AbstractTranscriptionBackend):
    """Sends audio to ``/audio/transcriptions`` as multipart form data."""

    def __init__(self, api_key: str, base_url: str = "https://api.openai.com/v1",
                 model: str = "whisper-1", request_timeout: float = 15.0,
                 health_timeout: float = 5.0):
        """Initialize Whisper backend.

        Args:
            api_key: OpenAI API key
            base_url: API root, without trailing slash
            model: Transcription model name
            request_timeout: Hard timeout for one transcription call in seconds
            health_timeout: Timeout for health pings in seconds
        """
        super().__init__(model)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.health_timeout = health_timeout

        logger.info(f"WhisperBackend initialized with model: {model}")

    def create_session(self) -> aiohttp.ClientSession:
        return aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "User-Agent": "voice2action/0.1",
            },
        )

    def _build_form(self, audio_data: bytes, options: TranscriptionOptions) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("file", audio_data, filename="audio.wav", content_type="audio/wav")
        form.add_field("model", self.model)
        form.add_field("response_format", options.response_format or "verbose_json")
        if options.language:
            form.add_field("language", options.language)
        if options.prompt:
            form.add_field("prompt", options.prompt)
        if options.temperature is not None:
            form.add_field("temperature", str(options.temperature))
        return form

    async def transcribe(self, session: aiohttp.ClientSession, audio_data: bytes,
                         options: TranscriptionOptions) -> Dict[str, Any]:
        url = f"{self.base_url}/audio/transcriptions"
        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with session.post(url, data=self._build_form(audio_data, options),
                                    timeout=timeout) as response:
                if response.status == 429:
                    raise RateLimitError("Transcription rate limit exceeded",
                                         {"status": response.status})
                if response.status in (408, 504):
                    raise UpstreamTimeoutError("Transcription endpoint timed out",
                                               {"status": response.status})
                if response.status != 200:
                    error_text = await response.text()
                    raise UpstreamError(f"Transcription API error: {response.status} - {error_text[:200]}",
                                        status=response.status)

                if options.response_format in ("json", "verbose_json"):
                    return await response.json()
                return {"text": (await response.text()).strip()}
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(
                f"Transcription timed out after {self.request_timeout}s",
                {"timeout": self.request_timeout},
            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Transcription request failed: {e}") from e

    async def ping(self, session: aiohttp.ClientSession) -> bool:
        url = f"{self.base_url}/models"
        try:
            async with session.get(url, params={"limit": "1"},
                                   timeout=aiohttp.ClientTimeout(total=self.health_timeout)) as response:
                return response.status == 200
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.debug(f"Health ping failed: {e}")
            return False
