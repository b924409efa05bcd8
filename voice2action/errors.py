"""Domain error types for the voice command pipeline."""

from typing import Any, Dict, Optional


class VoiceCommandError(Exception):
    """Base class for pipeline errors carrying structured context."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logs and API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }


class InputValidationError(VoiceCommandError):
    """Input rejected before any upstream call was made."""


class AudioValidationError(InputValidationError):
    """Audio buffer is empty or outside the accepted size bounds."""


class TranscriptValidationError(InputValidationError):
    """Transcript or user context is unusable for parsing."""


class TransientUpstreamError(VoiceCommandError):
    """Upstream failure that may succeed when retried."""


class RateLimitError(TransientUpstreamError):
    """Upstream endpoint answered with a rate limit."""


class UpstreamTimeoutError(TransientUpstreamError):
    """Upstream endpoint did not answer in time."""


class UpstreamError(VoiceCommandError):
    """Upstream endpoint failed in a way retrying will not fix."""

    def __init__(self, message: str, status: Optional[int] = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.status = status


class MalformedResponseError(VoiceCommandError):
    """Language-understanding output is not valid command JSON."""


class PoolExhaustedError(VoiceCommandError):
    """No healthy connection became available within the wait bound."""


class TranscriptionError(VoiceCommandError):
    """Transcription stage failed."""


class CommandParsingError(VoiceCommandError):
    """Command parsing stage failed."""


class ContextBuildError(VoiceCommandError):
    """Context snapshot could not be assembled."""
