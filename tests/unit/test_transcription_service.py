"""Tests for TranscriptionService: validation, caching, retries, batch and stream."""

import pytest

from voice2action.errors import (
    AudioValidationError,
    RateLimitError,
    TranscriptionError,
    UpstreamError,
    UpstreamTimeoutError,
)
from voice2action.models.audio import AudioSegment, TranscriptionOptions
from voice2action.models.transcription import TranscriptSegment
from voice2action.services.transcription_service import (
    TranscriptionService,
    calculate_confidence,
    validate_audio_size,
)

from tests.conftest import FakeTranscriptionBackend

FAST_RETRIES = {"rate_limit": 0.01, "timeout": 0.01}


def _service(backend, pool_factory, cache, **kwargs):
    kwargs.setdefault("retry_delays", FAST_RETRIES)
    kwargs.setdefault("batch_delay", 0.0)
    return TranscriptionService(backend, pool_factory(pool_size=2), cache, **kwargs)


@pytest.mark.unit
class TestConfidence:

    def test_default_confidence_without_segments(self):
        assert calculate_confidence("create a channel", []) == 0.9

    def test_empty_transcript_has_zero_confidence(self):
        assert calculate_confidence("", []) == 0.0

    def test_short_transcript_is_halved(self):
        assert calculate_confidence("ok", []) == pytest.approx(0.45)

    def test_segment_average_is_clamped(self):
        segments = [
            TranscriptSegment(start=0, end=1, text="a", confidence=0.02),
            TranscriptSegment(start=1, end=2, text="b", confidence=0.04),
        ]
        assert calculate_confidence("hello there", segments) == pytest.approx(0.1)

    def test_segments_without_confidence_default(self):
        segments = [
            TranscriptSegment(start=0, end=1, text="a", confidence=None),
            TranscriptSegment(start=1, end=2, text="b", confidence=0.7),
        ]
        assert calculate_confidence("hello there", segments) == pytest.approx(0.8)


@pytest.mark.unit
class TestAudioSizeValidation:

    def test_empty_rejected(self):
        with pytest.raises(AudioValidationError):
            validate_audio_size(b"")

    def test_too_small_rejected(self):
        with pytest.raises(AudioValidationError):
            validate_audio_size(b"\x00" * 999)

    def test_lower_bound_accepted(self):
        validate_audio_size(b"\x00" * 1000)

    def test_too_large_rejected(self):
        with pytest.raises(AudioValidationError) as exc_info:
            validate_audio_size(b"\x00" * (25 * 1024 * 1024 + 1))
        assert exc_info.value.context["audio_size"] == 25 * 1024 * 1024 + 1


@pytest.mark.unit
class TestTranscribe:

    @pytest.mark.asyncio
    async def test_successful_transcription(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([{
            "text": " Create a channel for marketing ",
            "language": "en",
            "segments": [{"start": 0.0, "end": 1.5, "text": "Create a channel for marketing",
                          "words": [{"word": "Create", "start": 0.0, "end": 0.3}]}],
        }])
        service = _service(backend, pool_factory, transcription_cache)

        result = await service.transcribe(sample_audio)

        assert result.transcript == "Create a channel for marketing"
        assert result.confidence == pytest.approx(0.9)
        assert result.language == "en"
        assert result.from_cache is False
        assert result.segments[0].words[0].word == "Create"
        assert result.processing_time >= 0
        assert service.success_count == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_language_defaults_to_english(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([{"text": "hello world"}])
        service = _service(backend, pool_factory, transcription_cache)

        result = await service.transcribe(sample_audio)
        assert result.language == "en"
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_second_identical_call_is_served_from_cache(self, pool_factory, transcription_cache,
                                                              sample_audio):
        backend = FakeTranscriptionBackend([{"text": "send the report", "language": "en"}])
        service = _service(backend, pool_factory, transcription_cache)

        first = await service.transcribe(sample_audio)
        second = await service.transcribe(sample_audio)

        assert len(backend.calls) == 1
        assert second.from_cache is True
        assert second.transcript == first.transcript
        assert transcription_cache.get_stats()["hits"] == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_low_confidence_results_are_not_cached(self, pool_factory, transcription_cache,
                                                         sample_audio):
        backend = FakeTranscriptionBackend([{
            "text": "mumble",
            "segments": [{"start": 0, "end": 1, "text": "mumble", "confidence": 0.4}],
        }])
        service = _service(backend, pool_factory, transcription_cache)

        await service.transcribe(sample_audio)
        await service.transcribe(sample_audio)

        assert len(backend.calls) == 2
        assert await transcription_cache.get_total_keys() == 0
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_segment_hints_become_options(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend()
        service = _service(backend, pool_factory, transcription_cache)
        segment = AudioSegment(audio_data=sample_audio, language="de", context="Acme, Priya")

        await service.transcribe(segment)

        options = backend.call_options[0]
        assert options.language == "de"
        assert options.prompt == "Acme, Priya"
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_audio_makes_no_upstream_call(self, pool_factory, transcription_cache):
        backend = FakeTranscriptionBackend()
        service = _service(backend, pool_factory, transcription_cache)

        with pytest.raises(AudioValidationError):
            await service.transcribe(b"\x00" * 10)

        assert backend.calls == []
        assert service.error_count == 0

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([
            RateLimitError("slow down"),
            {"text": "after retry", "language": "en"},
        ])
        service = _service(backend, pool_factory, transcription_cache)

        result = await service.transcribe(sample_audio)

        assert result.transcript == "after retry"
        assert len(backend.calls) == 2
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_persistent_timeouts_exhaust_retries(self, pool_factory, transcription_cache,
                                                       sample_audio):
        backend = FakeTranscriptionBackend([UpstreamTimeoutError("no answer")])
        service = _service(backend, pool_factory, transcription_cache, max_retries=2)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await service.transcribe(sample_audio)

        assert len(backend.calls) == 2
        assert exc_info.value.context["audio_size"] == len(sample_audio)
        assert "request_id" in exc_info.value.context
        assert service.error_count == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_upstream_errors_are_not_retried(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([UpstreamError("bad request", status=400)])
        service = _service(backend, pool_factory, transcription_cache)

        with pytest.raises(UpstreamError):
            await service.transcribe(sample_audio)

        assert len(backend.calls) == 1
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_wrapped(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([KeyError("text")])
        service = _service(backend, pool_factory, transcription_cache)

        with pytest.raises(TranscriptionError) as exc_info:
            await service.transcribe(sample_audio)

        assert exc_info.value.context["audio_size"] == len(sample_audio)
        assert "original_error" in exc_info.value.context
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_failures_are_recorded_on_the_connection(self, pool_factory, transcription_cache,
                                                           sample_audio):
        backend = FakeTranscriptionBackend([UpstreamError("boom")])
        service = _service(backend, pool_factory, transcription_cache)

        with pytest.raises(UpstreamError):
            await service.transcribe(sample_audio)

        stats = service.pool.get_stats()
        assert stats["failed_requests"] == 1
        assert stats["active"] == 0
        await service.shutdown()


@pytest.mark.unit
class TestBatchAndStream:

    @pytest.mark.asyncio
    async def test_batch_preserves_order_and_isolates_failures(self, pool_factory, transcription_cache,
                                                               audio_test_data):
        segments = [AudioSegment(audio_data=audio_test_data("sine", 0.1 * (i + 1))) for i in range(5)]
        failing = segments[2].audio_data

        def respond(audio):
            if audio == failing:
                raise UpstreamError("bad segment")
            return {"text": f"segment of {len(audio)} bytes", "language": "en"}

        backend = FakeTranscriptionBackend([respond])
        service = _service(backend, pool_factory, transcription_cache)

        results = await service.transcribe_batch(segments)

        assert len(results) == 5
        assert results[2].confidence == 0.0
        assert results[2].error is not None
        for i in (0, 1, 3, 4):
            assert results[i].transcript == f"segment of {len(segments[i].audio_data)} bytes"
            assert results[i].error is None
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_empty_batch(self, pool_factory, transcription_cache):
        service = _service(FakeTranscriptionBackend(), pool_factory, transcription_cache)
        assert await service.transcribe_batch([]) == []

    @pytest.mark.asyncio
    async def test_stream_flushes_segments_and_remainder(self, pool_factory, transcription_cache):
        backend = FakeTranscriptionBackend([lambda audio: {"text": f"{len(audio)} bytes"}])
        service = _service(backend, pool_factory, transcription_cache, stream_min_bytes=4000)

        async def chunks():
            for _ in range(5):
                yield b"\x01\x02" * 1000  # 2000 bytes each

        results = [r async for r in service.transcribe_stream(chunks())]

        assert [r.transcript for r in results] == ["4000 bytes", "4000 bytes", "2000 bytes"]
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_stream_cuts_on_pauses_in_speech(self, pool_factory, transcription_cache, audio_test_data):
        backend = FakeTranscriptionBackend([lambda audio: {"text": f"{len(audio)} bytes"}])
        service = _service(backend, pool_factory, transcription_cache, stream_min_bytes=16000,
                           stream_vad={"silence_seconds": 0.5, "max_segment_seconds": 10})
        audio = b"".join([
            audio_test_data("silence", 0.5),
            audio_test_data("sine", 1.0),
            audio_test_data("silence", 0.6),
            audio_test_data("sine", 0.5),
        ])

        async def chunks():
            for offset in range(0, len(audio), 3200):
                yield audio[offset:offset + 3200]

        results = [r async for r in service.transcribe_stream(chunks())]

        assert [r.transcript for r in results] == ["64000 bytes", "19200 bytes"]
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_stream_yields_error_results_and_continues(self, pool_factory, transcription_cache):
        backend = FakeTranscriptionBackend([UpstreamError("first failed"), {"text": "second ok"}])
        service = _service(backend, pool_factory, transcription_cache, stream_min_bytes=2000)

        async def chunks():
            yield b"\x03\x04" * 1000
            yield b"\x05\x06" * 1000

        results = [r async for r in service.transcribe_stream(chunks())]

        assert results[0].error is not None
        assert results[0].confidence == 0.0
        assert results[1].transcript == "second ok"
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_tiny_stream_remainder_reports_validation_error(self, pool_factory, transcription_cache):
        service = _service(FakeTranscriptionBackend(), pool_factory, transcription_cache,
                           stream_min_bytes=4000)

        async def chunks():
            yield b"\x00" * 100

        results = [r async for r in service.transcribe_stream(chunks())]

        assert len(results) == 1
        assert "too small" in results[0].error


@pytest.mark.unit
class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy_after_successes(self, pool_factory, transcription_cache, sample_audio):
        service = _service(FakeTranscriptionBackend(), pool_factory, transcription_cache)
        await service.transcribe(sample_audio)

        health = service.get_health_status()
        assert health["status"] == "healthy"
        assert health["connection_pool"]["total_connections"] == 2
        assert "hit_rate" in health["cache"]
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_error_rate_makes_service_unhealthy(self, pool_factory, transcription_cache, sample_audio):
        backend = FakeTranscriptionBackend([UpstreamError("down")])
        service = _service(backend, pool_factory, transcription_cache)

        with pytest.raises(UpstreamError):
            await service.transcribe(sample_audio)

        assert service.get_health_status()["status"] == "unhealthy"
        await service.shutdown()

    def test_options_are_passed_through(self):
        options = TranscriptionOptions(language="en", temperature=0.2)
        assert options.response_format == "verbose_json"
