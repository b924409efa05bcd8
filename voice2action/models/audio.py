"""Audio input models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AudioSegment:
    """Captured speech audio handed to the pipeline."""
    audio_data: bytes
    sample_rate: int = 16000
    channels: int = 1
    encoding: str = "wav"
    duration_seconds: Optional[float] = None  # Derived from 16-bit PCM size when omitted
    captured_at: datetime = field(default_factory=datetime.now)
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    language: Optional[str] = None
    context: Optional[str] = None  # Free-text hint passed to the transcriber as a prompt

    def __post_init__(self):
        if self.duration_seconds is None and self.audio_data:
            bytes_per_second = self.sample_rate * self.channels * 2
            object.__setattr__(self, "duration_seconds", len(self.audio_data) / bytes_per_second)

    @property
    def size(self) -> int:
        return len(self.audio_data)


@dataclass
class TranscriptionOptions:
    """Options forwarded to the transcription endpoint."""
    language: Optional[str] = None
    prompt: Optional[str] = None
    temperature: Optional[float] = None
    response_format: str = "verbose_json"

    @classmethod
    def from_segment(cls, segment: AudioSegment) -> "TranscriptionOptions":
        return cls(language=segment.language, prompt=segment.context)
