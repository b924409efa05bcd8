"""Tests for the end-to-end pipeline orchestrator."""

import pytest
from pubsub.core import Publisher

from voice2action.commands.parser import CommandParser
from voice2action.errors import AudioValidationError, UpstreamError
from voice2action.models.audio import AudioSegment, TranscriptionOptions
from voice2action.models.context import UserContext
from voice2action.models.events import PIPELINE_STAGES
from voice2action.models.metrics import ExecutionResult
from voice2action.services.event_publisher import PipelineEventPublisher
from voice2action.services.orchestrator import PipelineOrchestrator, validate_audio_input
from voice2action.services.transcription_service import TranscriptionService

from tests.conftest import FakeLanguageModelClient, FakeTranscriptionBackend, command_response

FAST_RETRIES = {"rate_limit": 0.01, "timeout": 0.01}


class EventRecorder:
    """Subscribes to every pipeline stage and keeps what it hears."""

    def __init__(self, events: PipelineEventPublisher):
        self.events = []
        for stage in PIPELINE_STAGES:
            events.subscribe(stage, self.on_event)

    def on_event(self, event):
        self.events.append(event)

    @property
    def stages(self):
        return [e.stage for e in self.events]


class RecordingExecutor:
    def __init__(self, result=None, error=None):
        self.result = result or ExecutionResult(success=True, executed_actions=["action-1"])
        self.error = error
        self.commands = []

    async def execute(self, command, user_context):
        self.commands.append(command)
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def event_publisher():
    return PipelineEventPublisher(Publisher())


@pytest.fixture
def recorder(event_publisher):
    return EventRecorder(event_publisher)


@pytest.fixture
def make_orchestrator(pool_factory, transcription_cache, context_aggregator, event_publisher):

    def make(transcriptions=None, llm_responses=None, executor=None):
        backend = FakeTranscriptionBackend(transcriptions or [
            {"text": "Create a high priority task called Launch Plan", "language": "en"}])
        service = TranscriptionService(backend, pool_factory(), transcription_cache,
                                       retry_delays=FAST_RETRIES, batch_delay=0.0)
        llm = FakeLanguageModelClient(llm_responses or [command_response()])
        parser = CommandParser(llm, context_aggregator, retry_delays=FAST_RETRIES, batch_delay=0.0)
        orchestrator = PipelineOrchestrator(service, parser, executor=executor,
                                            event_publisher=event_publisher)
        return orchestrator, backend, llm

    return make


@pytest.mark.unit
class TestAudioInputValidation:

    def test_bounds(self):
        with pytest.raises(AudioValidationError):
            validate_audio_input(b"")
        with pytest.raises(AudioValidationError):
            validate_audio_input(b"\x00" * 999)
        with pytest.raises(AudioValidationError):
            validate_audio_input(b"\x00" * (50 * 1024 * 1024 + 1))
        validate_audio_input(b"\x00" * 1000)

    def test_non_wav_header_only_warns(self, sample_audio, caplog):
        validate_audio_input(sample_audio)
        assert "not a standard WAV file" in caplog.text

    def test_wav_header_is_quiet(self, wav_audio, caplog):
        validate_audio_input(wav_audio)
        assert "not a standard WAV file" not in caplog.text


@pytest.mark.unit
class TestProcessVoiceCommand:

    @pytest.mark.asyncio
    async def test_successful_run(self, make_orchestrator, recorder, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator()

        result = await orchestrator.process_voice_command(wav_audio, user_context)

        assert result.success is True
        assert result.error is None
        assert result.transcript.transcript == "Create a high priority task called Launch Plan"
        assert result.command.actions[0].parameters["title"] == "Launch Plan"
        metrics = result.metrics
        assert metrics.command_id.startswith("cmd-")
        assert metrics.user_id == "user-1"
        assert metrics.action_count == 1
        assert metrics.accuracy == pytest.approx(0.9)
        assert metrics.total_time >= metrics.transcription_time + metrics.parsing_time
        assert recorder.stages == [
            "preprocessing_complete", "transcription_complete", "parsing_complete", "processing_complete"]
        assert all(e.command_id == metrics.command_id for e in recorder.events)
        assert recorder.events[2].data["action_count"] == 1

    @pytest.mark.asyncio
    async def test_accuracy_is_the_weaker_confidence(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator(llm_responses=[command_response(confidence=0.4)])
        result = await orchestrator.process_voice_command(wav_audio, user_context)
        assert result.metrics.accuracy == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_invalid_audio_fails_before_transcription(self, make_orchestrator, recorder, user_context):
        orchestrator, backend, _ = make_orchestrator()

        result = await orchestrator.process_voice_command(b"\x00" * 10, user_context)

        assert result.success is False
        assert "too small" in result.error
        assert result.transcript is None
        assert backend.calls == []
        assert recorder.stages == ["processing_error"]

    @pytest.mark.asyncio
    async def test_transcription_failure(self, make_orchestrator, recorder, wav_audio, user_context):
        orchestrator, _, llm = make_orchestrator(transcriptions=[UpstreamError("whisper down")])

        result = await orchestrator.process_voice_command(wav_audio, user_context)

        assert result.success is False
        assert "whisper down" in result.error
        assert result.metrics.error == result.error
        assert llm.calls == []
        assert recorder.stages == ["preprocessing_complete", "processing_error"]

    @pytest.mark.asyncio
    async def test_empty_transcript_is_a_failure(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, llm = make_orchestrator(transcriptions=[{"text": "   "}])

        result = await orchestrator.process_voice_command(wav_audio, user_context)

        assert result.success is False
        assert "Empty transcription" in result.error
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_parse_failure_keeps_transcript(self, make_orchestrator, recorder, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator(llm_responses=["not json"])

        result = await orchestrator.process_voice_command(wav_audio, user_context)

        assert result.success is False
        assert result.command is None
        assert result.transcript.transcript.startswith("Create")
        assert recorder.stages[-1] == "processing_error"
        assert recorder.events[-1].data["metrics"] is result.metrics

    @pytest.mark.asyncio
    async def test_user_language_is_applied(self, make_orchestrator, wav_audio):
        orchestrator, backend, _ = make_orchestrator()
        user = UserContext(user_id="user-1", organization_id="org-1", language="fr")
        options = TranscriptionOptions()

        await orchestrator.process_voice_command(wav_audio, user, options)

        assert backend.call_options[0].language == "fr"
        assert options.language is None

    @pytest.mark.asyncio
    async def test_segment_hints_are_used(self, make_orchestrator, wav_audio, user_context):
        orchestrator, backend, _ = make_orchestrator()

        await orchestrator.process_voice_command(AudioSegment(audio_data=wav_audio, language="de"), user_context)

        assert backend.call_options[0].language == "de"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_fail_the_run(self, make_orchestrator, event_publisher,
                                                          wav_audio, user_context):
        def broken(event):
            raise RuntimeError("listener bug")

        event_publisher.subscribe("parsing_complete", broken)
        orchestrator, _, _ = make_orchestrator()

        result = await orchestrator.process_voice_command(wav_audio, user_context)

        assert result.success is True


@pytest.mark.unit
class TestExecution:

    @pytest.mark.asyncio
    async def test_successful_execution(self, make_orchestrator, recorder, wav_audio, user_context):
        executor = RecordingExecutor()
        orchestrator, _, _ = make_orchestrator(executor=executor)

        result = await orchestrator.process_and_execute_voice_command(wav_audio, user_context)

        assert result.success is True
        assert result.execution_result.executed_actions == ["action-1"]
        assert executor.commands[0] is result.command
        assert result.metrics.execution_time >= 0
        assert recorder.stages[-1] == "command_execution_complete"
        assert orchestrator.metrics[-1] is result.metrics

    @pytest.mark.asyncio
    async def test_failed_execution(self, make_orchestrator, wav_audio, user_context):
        executor = RecordingExecutor(ExecutionResult(success=False, failed_actions=["action-1"]))
        orchestrator, _, _ = make_orchestrator(executor=executor)

        result = await orchestrator.process_and_execute_voice_command(wav_audio, user_context)

        assert result.success is False
        assert result.error == "Command execution failed"
        assert result.metrics.success is False
        assert result.execution_result.failed_actions == ["action-1"]

    @pytest.mark.asyncio
    async def test_executor_exception(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator(executor=RecordingExecutor(error=RuntimeError("db gone")))

        result = await orchestrator.process_and_execute_voice_command(wav_audio, user_context)

        assert result.success is False
        assert "db gone" in result.error

    @pytest.mark.asyncio
    async def test_missing_executor(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator()

        result = await orchestrator.process_and_execute_voice_command(wav_audio, user_context)

        assert result.success is False
        assert result.error == "No command executor configured"

    @pytest.mark.asyncio
    async def test_processing_failure_skips_execution(self, make_orchestrator, wav_audio, user_context):
        executor = RecordingExecutor()
        orchestrator, _, _ = make_orchestrator(llm_responses=["not json"], executor=executor)

        result = await orchestrator.process_and_execute_voice_command(wav_audio, user_context)

        assert result.success is False
        assert executor.commands == []


@pytest.mark.unit
class TestStreaming:

    @pytest.mark.asyncio
    async def test_partial_commands(self, make_orchestrator, user_context):
        orchestrator, _, _ = make_orchestrator(
            transcriptions=[UpstreamError("garbled"), {"text": "create a task"}],
            llm_responses=[command_response(confidence=0.95, actions=[
                {"type": "CREATE_TASK", "parameters": {"title": f"Task {i}"}} for i in range(5)
            ])],
        )
        orchestrator.transcription_service.stream_min_bytes = 2000

        async def chunks():
            yield b"\x01\x02" * 1000
            yield b"\x03\x04" * 1000

        updates = [u async for u in orchestrator.process_streaming_audio(chunks(), user_context)]

        assert updates[0].error is not None
        assert updates[0].confidence == 0.0
        assert updates[1].transcript == "create a task"
        assert updates[1].intent == "Create task"
        assert updates[1].confidence == pytest.approx(0.9)
        assert len(updates[1].actions) == 3
        assert updates[1].partial is True

    @pytest.mark.asyncio
    async def test_unparseable_fragments_are_skipped(self, make_orchestrator, user_context):
        orchestrator, _, _ = make_orchestrator(llm_responses=["not json"])
        orchestrator.transcription_service.stream_min_bytes = 2000

        async def chunks():
            yield b"\x05\x06" * 1000

        updates = [u async for u in orchestrator.process_streaming_audio(chunks(), user_context)]

        assert updates == []

    @pytest.mark.asyncio
    async def test_broken_source_yields_error_update(self, make_orchestrator, user_context):
        orchestrator, _, _ = make_orchestrator()

        async def chunks():
            raise ConnectionError("microphone unplugged")
            yield b""

        updates = [u async for u in orchestrator.process_streaming_audio(chunks(), user_context)]

        assert len(updates) == 1
        assert "microphone unplugged" in updates[0].error


@pytest.mark.unit
class TestStatisticsAndHealth:

    @pytest.mark.asyncio
    async def test_empty_statistics(self, make_orchestrator):
        orchestrator, _, _ = make_orchestrator()

        overall = orchestrator.get_performance_statistics()["overall"]

        assert overall["total_commands"] == 0
        assert overall["success_rate"] == 0.0
        assert orchestrator.get_health_status()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_statistics_after_runs(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator()
        await orchestrator.process_voice_command(wav_audio, user_context)
        await orchestrator.process_voice_command(b"", user_context)

        stats = orchestrator.get_performance_statistics()

        assert stats["overall"]["total_commands"] == 2
        assert stats["overall"]["successful_commands"] == 1
        assert stats["overall"]["success_rate"] == 0.5
        assert stats["overall"]["p99_processing_time"] >= stats["overall"]["p95_processing_time"] >= 0
        assert stats["parsing"]["success_count"] == 1
        assert "transcription_time" in stats["transcription"]

    @pytest.mark.asyncio
    async def test_healthy_after_successes(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator()
        await orchestrator.process_voice_command(wav_audio, user_context)

        health = orchestrator.get_health_status()

        assert health["status"] == "healthy"
        assert health["metrics"]["total_commands"] == 1
        assert health["components"]["transcription"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_low_success_rate_is_unhealthy(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator(llm_responses=["not json"])
        await orchestrator.process_voice_command(wav_audio, user_context)

        assert orchestrator.get_health_status()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_slow_pipeline_is_degraded(self, make_orchestrator, wav_audio, user_context):
        orchestrator, _, _ = make_orchestrator()
        result = await orchestrator.process_voice_command(wav_audio, user_context)
        result.metrics.total_time = 4.0

        assert orchestrator.get_health_status()["status"] == "degraded"
