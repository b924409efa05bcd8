"""Transcription service combining the session pool, the cache and retries."""

import asyncio
import itertools
import logging
import time
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Union

from ..errors import (
    AudioValidationError,
    TranscriptionError,
    UpstreamTimeoutError,
    VoiceCommandError,
)
from ..metrics import PerformanceTracker
from ..models.audio import AudioSegment, TranscriptionOptions
from ..models.transcription import TranscriptResult, TranscriptSegment, WordTiming
from ..retry import call_with_retries
from ..transcription.base import AbstractTranscriptionBackend
from ..transcription.cache import TranscriptionCache
from ..transcription.pool import ConnectionPool
from ..transcription.stream import DEFAULT_MIN_STREAM_BYTES, create_segmenter

logger = logging.getLogger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024
MIN_AUDIO_BYTES = 1000
DEFAULT_SEGMENT_CONFIDENCE = 0.9


def calculate_confidence(transcript: str, segments: List[TranscriptSegment]) -> float:
    """Score a transcript from its segment confidences.

    Defaults to 0.9, averages segment confidences clamped to [0.1, 1.0] when
    segments exist, is 0 for an empty transcript and is halved for
    transcripts under three characters.
    """
    if not transcript:
        return 0.0

    confidence = DEFAULT_SEGMENT_CONFIDENCE
    if segments:
        total = sum(s.confidence if s.confidence is not None else DEFAULT_SEGMENT_CONFIDENCE
                    for s in segments)
        confidence = max(0.1, min(1.0, total / len(segments)))

    if len(transcript) < 3:
        confidence *= 0.5
    return confidence


def validate_audio_size(audio_data: bytes, min_bytes: int = MIN_AUDIO_BYTES,
                        max_bytes: int = MAX_AUDIO_BYTES) -> None:
    """Raise ``AudioValidationError`` if the buffer is empty or out of bounds."""
    if not audio_data:
        raise AudioValidationError("Audio buffer is empty", {"audio_size": 0})
    if len(audio_data) > max_bytes:
        raise AudioValidationError(f"Audio buffer too large (>{max_bytes} bytes)",
                                   {"audio_size": len(audio_data)})
    if len(audio_data) < min_bytes:
        raise AudioValidationError(f"Audio buffer too small (<{min_bytes} bytes)",
                                   {"audio_size": len(audio_data)})


class TranscriptionService:
    """Turns audio into ``TranscriptResult`` objects.

    Single calls check the cache, borrow a pooled session, and retry on rate
    limits and timeouts. Batch and stream variants are built on top of
    ``transcribe``.
    """

    def __init__(
        self,
        backend: AbstractTranscriptionBackend,
        pool: ConnectionPool,
        cache: TranscriptionCache,
        request_timeout: float = 15.0,
        max_retries: int = 2,
        cache_confidence_threshold: float = 0.7,
        cache_ttl: int = 3600,
        batch_concurrency: int = 3,
        batch_delay: float = 0.1,
        stream_min_bytes: int = DEFAULT_MIN_STREAM_BYTES,
        stream_vad: Optional[Dict[str, Any]] = None,
        retry_delays: Optional[Dict[str, float]] = None,
    ):
        """Initialize transcription service.

        Args:
            backend: Endpoint client used for each call
            pool: Pool that lends sessions to the backend
            cache: Content-addressed result cache
            request_timeout: Hard timeout for one endpoint call in seconds
            max_retries: Total attempts for rate-limited or timed-out calls
            cache_confidence_threshold: Only results above this are cached
            cache_ttl: Seconds a cached result lives
            batch_concurrency: Segments transcribed at once in a batch
            batch_delay: Pause between batch groups in seconds
            stream_min_bytes: Buffered bytes that trigger a streaming flush
            stream_vad: Voice-activity settings for streams; None cuts on size only
            retry_delays: Optional ``rate_limit``/``timeout`` backoff overrides
        """
        self.backend = backend
        self.pool = pool
        self.cache = cache
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.cache_confidence_threshold = cache_confidence_threshold
        self.cache_ttl = cache_ttl
        self.batch_concurrency = batch_concurrency
        self.batch_delay = batch_delay
        self.stream_min_bytes = stream_min_bytes
        self.stream_vad = stream_vad
        self.retry_delays = retry_delays or {}

        self._request_ids = itertools.count(1)
        self.performance = PerformanceTracker()
        self.success_count = 0
        self.error_count = 0

        logger.info(f"TranscriptionService initialized (timeout={request_timeout}s, retries={max_retries})")

    async def start(self) -> None:
        await self.pool.start()

    async def shutdown(self) -> None:
        await self.pool.shutdown()

    async def transcribe(self, audio: Union[bytes, AudioSegment],
                         options: Optional[TranscriptionOptions] = None) -> TranscriptResult:
        """Transcribe one audio buffer.

        Args:
            audio: Raw bytes or an ``AudioSegment`` whose hints become options
            options: Explicit endpoint options

        Returns:
            TranscriptResult with a fresh ``processing_time``

        Raises:
            AudioValidationError: If the buffer is empty or out of bounds
            VoiceCommandError: Typed upstream or pool failures
            TranscriptionError: Any other failure, with request context
        """
        if isinstance(audio, AudioSegment):
            audio_data = audio.audio_data
            options = options or TranscriptionOptions.from_segment(audio)
        else:
            audio_data = audio
        options = options or TranscriptionOptions()

        request_id = f"transcription-{next(self._request_ids)}-{int(time.time() * 1000)}"
        started = time.perf_counter()

        validate_audio_size(audio_data)

        try:
            cache_key = self.cache.generate_cache_key(audio_data, options)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                cached.processing_time = time.perf_counter() - started
                logger.debug(f"Transcription cache hit ({request_id})")
                return cached

            raw = await call_with_retries(
                lambda: self._call_backend(audio_data, options),
                max_attempts=self.max_retries,
                description=f"Transcription {request_id}",
                rate_limit_delay=self.retry_delays.get("rate_limit", 1.0),
                timeout_delay=self.retry_delays.get("timeout", 0.5),
            )

            processing_time = time.perf_counter() - started
            result = self._build_result(raw, options, processing_time)

            if result.confidence > self.cache_confidence_threshold:
                await self.cache.set(cache_key, result, self.cache_ttl)

            self.performance.record("transcription_time", processing_time)
            self.success_count += 1
            logger.info(f"Transcription {request_id} succeeded in {processing_time:.2f}s "
                        f"({len(result.transcript)} chars, confidence {result.confidence:.2f})")
            return result

        except VoiceCommandError as e:
            self._record_failure(request_id, started, e)
            e.context.setdefault("request_id", request_id)
            e.context.setdefault("audio_size", len(audio_data))
            raise
        except Exception as e:
            processing_time = self._record_failure(request_id, started, e)
            raise TranscriptionError("Transcription failed", {
                "request_id": request_id,
                "processing_time": processing_time,
                "original_error": str(e),
                "audio_size": len(audio_data),
            }) from e

    async def _call_backend(self, audio_data: bytes, options: TranscriptionOptions) -> Dict[str, Any]:
        async with self.pool.connection() as handle:
            try:
                raw = await asyncio.wait_for(
                    self.backend.transcribe(handle.session, audio_data, options),
                    timeout=self.request_timeout,
                )
            except asyncio.TimeoutError as e:
                self.pool.record_failure(handle)
                raise UpstreamTimeoutError(f"Transcription timed out after {self.request_timeout}s") from e
            except Exception:
                self.pool.record_failure(handle)
                raise
            self.pool.record_success(handle)
            return raw

    def _record_failure(self, request_id: str, started: float, error: Exception) -> float:
        processing_time = time.perf_counter() - started
        self.performance.record("transcription_time", processing_time)
        self.error_count += 1
        logger.error(f"Transcription {request_id} failed after {processing_time:.2f}s: {error}")
        return processing_time

    def _build_result(self, raw: Dict[str, Any], options: TranscriptionOptions,
                      processing_time: float) -> TranscriptResult:
        transcript = (raw.get("text") or "").strip()
        segments = []
        for s in raw.get("segments") or []:
            words = s.get("words")
            segments.append(TranscriptSegment(
                start=float(s.get("start", 0.0)),
                end=float(s.get("end", 0.0)),
                text=(s.get("text") or "").strip(),
                confidence=s.get("confidence"),
                words=[WordTiming(w.get("word", ""), float(w.get("start", 0.0)), float(w.get("end", 0.0)))
                       for w in words] if words else None,
            ))
        return TranscriptResult(
            transcript=transcript,
            confidence=calculate_confidence(transcript, segments),
            language=raw.get("language") or options.language or "en",
            processing_time=processing_time,
            segments=segments,
        )

    async def transcribe_batch(self, segments: List[AudioSegment]) -> List[TranscriptResult]:
        """Transcribe segments a few at a time, preserving input order.

        A segment that fails becomes a zero-confidence result carrying the
        error instead of failing the batch.
        """
        if not segments:
            return []

        started = time.perf_counter()
        results: List[TranscriptResult] = []

        for i in range(0, len(segments), self.batch_concurrency):
            group = segments[i:i + self.batch_concurrency]
            outcomes = await asyncio.gather(
                *(self.transcribe(segment) for segment in group),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    results.append(TranscriptResult.failed(str(outcome)))
                else:
                    results.append(outcome)

            if i + self.batch_concurrency < len(segments):
                await asyncio.sleep(self.batch_delay)

        failed = sum(1 for r in results if r.error)
        logger.info(f"Batch transcription of {len(segments)} segments finished in "
                    f"{time.perf_counter() - started:.2f}s ({failed} failed)")
        return results

    async def transcribe_stream(self, chunks: AsyncIterable[bytes],
                                options: Optional[TranscriptionOptions] = None) -> AsyncIterator[TranscriptResult]:
        """Yield a result per streamed segment, then for the remainder.

        Segments are cut every ~2s of audio, or on pauses in speech when
        voice-activity settings are configured.

        Failures are yielded as error-tagged results and the stream keeps going.
        """
        segmenter = create_segmenter(self.stream_min_bytes, self.stream_vad)

        async for chunk in chunks:
            segment = segmenter.feed(chunk)
            if segment is not None:
                yield await self._transcribe_stream_segment(segment, options)

        remainder = segmenter.finish()
        if remainder is not None:
            yield await self._transcribe_stream_segment(remainder, options)

    async def _transcribe_stream_segment(self, segment: bytes,
                                         options: Optional[TranscriptionOptions]) -> TranscriptResult:
        try:
            return await self.transcribe(segment, options)
        except Exception as e:
            logger.warning(f"Stream segment of {len(segment)} bytes failed: {e}")
            return TranscriptResult.failed(str(e))

    def get_performance_stats(self) -> Dict[str, Dict[str, float]]:
        return self.performance.stats()

    def get_health_status(self) -> Dict[str, Any]:
        """Classify service health from latency and error rate."""
        timing = self.performance.summary("transcription_time")
        average = timing["avg"]
        total = self.success_count + self.error_count
        error_rate = self.error_count / total if total else 0.0

        status = "healthy"
        if average > 3.0:
            status = "unhealthy"
        elif average > 2.0:
            status = "degraded"

        if error_rate > 0.1:
            status = "unhealthy"
        elif error_rate > 0.05 and status == "healthy":
            status = "degraded"

        return {
            "status": status,
            "error_rate": round(error_rate, 4),
            "metrics": self.get_performance_stats(),
            "connection_pool": self.pool.get_stats(),
            "cache": self.cache.get_stats(),
        }
