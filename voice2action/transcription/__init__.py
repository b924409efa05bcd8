"""Transcription module for Voice2Action."""

from .base import AbstractTranscriptionBackend
from .whisper_backend import WhisperBackend
from .pool import ConnectionPool, PooledConnection
from .cache import TranscriptionCache, audio_fingerprint, options_fingerprint
from .stream import StreamSegmenter, VoiceActivityDetector, create_segmenter

__all__ = [
    "AbstractTranscriptionBackend",
    "WhisperBackend",
    "ConnectionPool",
    "PooledConnection",
    "TranscriptionCache",
    "audio_fingerprint",
    "options_fingerprint",
    "StreamSegmenter",
    "VoiceActivityDetector",
    "create_segmenter",
]
