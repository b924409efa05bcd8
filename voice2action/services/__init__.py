"""Pipeline services for Voice2Action."""

from .event_publisher import PipelineEventPublisher
from .orchestrator import PipelineOrchestrator, validate_audio_input
from .transcription_service import TranscriptionService, calculate_confidence, validate_audio_size

__all__ = [
    "PipelineEventPublisher",
    "PipelineOrchestrator",
    "validate_audio_input",
    "TranscriptionService",
    "calculate_confidence",
    "validate_audio_size",
]
