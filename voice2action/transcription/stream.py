"""Buffering state machine for streamed audio.

Streams are 16 kHz, 16-bit little-endian mono PCM. Without a detector the
segmenter cuts on a fixed byte count. With a ``VoiceActivityDetector`` it
cuts when speech is followed by enough silence, or when a segment grows to
its maximum length.
"""

import logging
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
BYTES_PER_SECOND = SAMPLE_RATE * 2

# 16 kHz * 2 bytes per sample * 2 seconds of mono audio
DEFAULT_MIN_STREAM_BYTES = BYTES_PER_SECOND * 2
DEFAULT_SILENCE_SECONDS = 1.5
DEFAULT_MAX_SEGMENT_SECONDS = 30.0


def _seconds_to_bytes(seconds: float) -> int:
    samples = int(seconds * SAMPLE_RATE)
    return samples * 2


def rms_energy(chunk: bytes) -> float:
    """Root-mean-square level of a PCM chunk, normalized to 0..1."""
    usable = len(chunk) - len(chunk) % 2
    if usable == 0:
        return 0.0
    samples = np.frombuffer(chunk[:usable], dtype="<i2").astype(np.float64) / 32768.0
    return float(np.sqrt(np.mean(samples * samples)))


class VoiceActivityDetector:
    """Energy-based speech detector with background-noise adaptation.

    A chunk counts as speech when its RMS level exceeds the adaptive
    threshold: the larger of the base threshold and ``noise_multiplier``
    times the running background level. Only non-speech chunks update the
    background estimate.
    """

    def __init__(self, threshold: float = 0.02, smoothing: float = 0.95, noise_multiplier: float = 2.0):
        if not 0.0 <= smoothing < 1.0:
            raise ValueError("smoothing must be in [0, 1)")
        self.threshold = threshold
        self.smoothing = smoothing
        self.noise_multiplier = noise_multiplier
        self.background_noise = 0.0
        self.last_energy = 0.0

    @property
    def adaptive_threshold(self) -> float:
        return max(self.threshold, self.background_noise * self.noise_multiplier)

    def calibrate(self, background_sample: bytes) -> None:
        """Seed the background level from a sample known to hold no speech."""
        self.background_noise = rms_energy(background_sample)
        logger.debug(f"VAD calibrated: background {self.background_noise:.4f}, "
                     f"threshold {self.adaptive_threshold:.4f}")

    def is_speech(self, chunk: bytes) -> bool:
        energy = rms_energy(chunk)
        self.last_energy = energy
        if energy > self.adaptive_threshold:
            return True
        self.background_noise = self.smoothing * self.background_noise + (1 - self.smoothing) * energy
        return False

    def reset(self) -> None:
        self.background_noise = 0.0
        self.last_energy = 0.0


class SegmenterState(Enum):
    ACCUMULATING = "accumulating"
    READY = "ready"
    FINISHED = "finished"


class StreamSegmenter:
    """Accumulates chunks until a flush condition, then hands out one segment.

    The cycle is accumulate -> flush check -> flush -> reset, with a final
    ``finish()`` that hands out whatever remains.
    """

    def __init__(self, min_bytes: int = DEFAULT_MIN_STREAM_BYTES,
                 detector: Optional[VoiceActivityDetector] = None,
                 silence_bytes: int = _seconds_to_bytes(DEFAULT_SILENCE_SECONDS),
                 max_bytes: int = _seconds_to_bytes(DEFAULT_MAX_SEGMENT_SECONDS)):
        """
        Args:
            min_bytes: Fixed flush size, or with a detector the smallest
                segment a silence may close
            detector: Enables voice-activity segmentation when given
            silence_bytes: Trailing silence after speech that closes a segment;
                also the pre-roll kept while waiting for speech
            max_bytes: Hard cap on one segment when a detector is used
        """
        if min_bytes <= 0:
            raise ValueError("min_bytes must be positive")
        if detector is not None and (silence_bytes <= 0 or max_bytes < min_bytes):
            raise ValueError("silence_bytes must be positive and max_bytes at least min_bytes")
        self.min_bytes = min_bytes
        self.detector = detector
        self.silence_bytes = silence_bytes - silence_bytes % 2
        self.max_bytes = max_bytes
        self.state = SegmenterState.ACCUMULATING
        self._buffer = bytearray()
        self.speech_detected = False
        self.trailing_silence = 0
        self.segments_emitted = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> Optional[bytes]:
        """Add a chunk. Returns a segment when a flush condition is met."""
        if self.state is SegmenterState.FINISHED:
            raise RuntimeError("Cannot feed a finished stream")
        self._buffer.extend(chunk)

        if self.detector is None:
            if len(self._buffer) >= self.min_bytes:
                self.state = SegmenterState.READY
                return self._flush()
            return None

        if self.detector.is_speech(chunk):
            self.speech_detected = True
            self.trailing_silence = 0
        elif self.speech_detected:
            self.trailing_silence += len(chunk)
        else:
            # Keep only a short pre-roll until someone starts talking
            excess = len(self._buffer) - self.silence_bytes
            if excess > 0:
                del self._buffer[:excess]
            return None

        if len(self._buffer) >= self.max_bytes:
            logger.debug(f"Segment reached the {self.max_bytes} byte cap")
            self.state = SegmenterState.READY
            return self._flush()
        if self.trailing_silence >= self.silence_bytes and len(self._buffer) >= self.min_bytes:
            self.state = SegmenterState.READY
            return self._flush()
        return None

    def finish(self) -> Optional[bytes]:
        """End the stream, returning the remainder if any.

        With a detector, a remainder that never contained speech is dropped.
        """
        if self.state is SegmenterState.FINISHED:
            return None
        remainder = None
        if self._buffer and (self.detector is None or self.speech_detected):
            remainder = self._flush()
        self._buffer.clear()
        self.state = SegmenterState.FINISHED
        return remainder

    def _flush(self) -> bytes:
        segment = bytes(self._buffer)
        self._buffer.clear()
        self.speech_detected = False
        self.trailing_silence = 0
        self.segments_emitted += 1
        self.state = SegmenterState.ACCUMULATING
        return segment


def create_segmenter(min_bytes: int = DEFAULT_MIN_STREAM_BYTES,
                     vad_settings: Optional[Dict[str, Any]] = None) -> StreamSegmenter:
    """Build a segmenter for one stream from ``transcription.stream_vad`` settings."""
    if not vad_settings or not vad_settings.get("enabled", True):
        return StreamSegmenter(min_bytes)
    detector = VoiceActivityDetector(
        threshold=vad_settings.get("threshold", 0.02),
        smoothing=vad_settings.get("smoothing", 0.95),
    )
    return StreamSegmenter(
        min_bytes,
        detector=detector,
        silence_bytes=_seconds_to_bytes(vad_settings.get("silence_seconds", DEFAULT_SILENCE_SECONDS)),
        max_bytes=_seconds_to_bytes(vad_settings.get("max_segment_seconds", DEFAULT_MAX_SEGMENT_SECONDS)),
    )
