"""Abstract base class for transcription backends."""

from abc import ABC, abstractmethod
from typing import Any, Dict
import logging

from ..models.audio import TranscriptionOptions

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Client for an external speech-to-text endpoint.

    Backends do not own connections. The pool asks the backend for sessions
    and hands one back in for each call.
    """

    def __init__(self, model: str = "whisper-1"):
        """Initialize backend with the model to request."""
        self.model = model

    @abstractmethod
    def create_session(self) -> Any:
        """Create a new pre-authenticated client session."""
        pass

    @abstractmethod
    async def transcribe(self, session: Any, audio_data: bytes,
                         options: TranscriptionOptions) -> Dict[str, Any]:
        """Send audio to the endpoint and return its decoded response.

        Args:
            session: Session obtained from ``create_session``
            audio_data: Raw audio bytes
            options: Language, prompt, temperature and response format

        Returns:
            Response payload with at least ``text`` and optionally
            ``language`` and ``segments``

        Raises:
            RateLimitError: If the endpoint throttled the request
            UpstreamTimeoutError: If the endpoint did not answer in time
            UpstreamError: For any other failure
        """
        pass

    @abstractmethod
    async def ping(self, session: Any) -> bool:
        """Cheap health probe. Returns True if the session can reach the endpoint."""
        pass
