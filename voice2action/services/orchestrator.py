"""End-to-end voice command pipeline: audio -> transcript -> command -> execution."""

import itertools
import logging
import time
from collections import deque
from dataclasses import replace
from typing import Any, AsyncIterable, AsyncIterator, Deque, Dict, Optional, Union

from ..commands.parser import CommandParser
from ..errors import AudioValidationError, TranscriptionError
from ..metrics import percentile
from ..models.audio import AudioSegment, TranscriptionOptions
from ..models.context import UserContext
from ..models.events import (
    COMMAND_EXECUTION_COMPLETE,
    PARSING_COMPLETE,
    PREPROCESSING_COMPLETE,
    PROCESSING_COMPLETE,
    PROCESSING_ERROR,
    TRANSCRIPTION_COMPLETE,
)
from ..models.metrics import PipelineMetrics, ProcessingResult, StreamingCommandUpdate
from ..storage.query import CommandExecutor
from .event_publisher import PipelineEventPublisher
from .transcription_service import TranscriptionService

logger = logging.getLogger(__name__)

MIN_PIPELINE_AUDIO_BYTES = 1000
MAX_PIPELINE_AUDIO_BYTES = 50 * 1024 * 1024

SIMPLE_COMMAND_TARGET_SECONDS = 2.0
COMPLEX_COMMAND_TARGET_SECONDS = 5.0
SIMPLE_COMMAND_MAX_ACTIONS = 2
STREAMING_ACTION_LIMIT = 3
DEFAULT_STREAM_CONFIDENCE = 0.5


def validate_audio_input(audio_data: bytes) -> None:
    """Reject empty, tiny or oversized buffers; warn on a non-WAV header.

    Raises:
        AudioValidationError: If the buffer is outside 1000 bytes .. 50MB
    """
    if not audio_data:
        raise AudioValidationError("Empty audio buffer", {"audio_size": 0})
    if len(audio_data) < MIN_PIPELINE_AUDIO_BYTES:
        raise AudioValidationError("Audio buffer too small (minimum 1KB)", {"audio_size": len(audio_data)})
    if len(audio_data) > MAX_PIPELINE_AUDIO_BYTES:
        raise AudioValidationError("Audio buffer too large (maximum 50MB)", {"audio_size": len(audio_data)})

    if len(audio_data) > 12 and audio_data[:4] != b"RIFF":
        logger.warning("Audio format validation: not a standard WAV file")


class PipelineOrchestrator:
    """Runs transcription, parsing and optional execution for one command.

    Every run returns a ``ProcessingResult`` with a complete metrics record,
    whether it succeeded or not, and announces each stage on the event bus.
    """

    def __init__(
        self,
        transcription_service: TranscriptionService,
        command_parser: CommandParser,
        executor: Optional[CommandExecutor] = None,
        event_publisher: Optional[PipelineEventPublisher] = None,
        metrics_window: int = 1000,
    ):
        """Initialize pipeline orchestrator.

        Args:
            transcription_service: Audio to transcript
            command_parser: Transcript to command
            executor: Carries out parsed commands, needed only for execution
            event_publisher: Stage event sink, defaults to the global pypubsub publisher
            metrics_window: Number of recent runs kept for statistics
        """
        self.transcription_service = transcription_service
        self.command_parser = command_parser
        self.executor = executor
        self.events = event_publisher or PipelineEventPublisher()
        self.metrics: Deque[PipelineMetrics] = deque(maxlen=metrics_window)
        self._command_ids = itertools.count(1)

        logger.info("PipelineOrchestrator initialized")

    def _next_command_id(self) -> str:
        return f"cmd-{next(self._command_ids)}-{int(time.time() * 1000)}"

    def validate_audio_input(self, audio_data: bytes) -> None:
        validate_audio_input(audio_data)

    async def process_voice_command(self, audio: Union[bytes, AudioSegment], user_context: UserContext,
                                    options: Optional[TranscriptionOptions] = None) -> ProcessingResult:
        """Transcribe and parse one spoken command.

        Args:
            audio: Raw audio bytes or an ``AudioSegment``
            user_context: Speaker identity and locale
            options: Transcription overrides; language defaults to the user's

        Returns:
            ProcessingResult, never raises for pipeline failures
        """
        started = time.perf_counter()
        command_id = self._next_command_id()
        metrics = PipelineMetrics(command_id=command_id, user_id=user_context.user_id)
        audio_data = audio.audio_data if isinstance(audio, AudioSegment) else audio
        transcript = None

        logger.info(f"Processing voice command {command_id} for {user_context.user_id} "
                    f"({len(audio_data or b'')} bytes)")

        try:
            stage_started = time.perf_counter()
            validate_audio_input(audio_data)
            metrics.preprocessing_time = time.perf_counter() - stage_started
            self.events.publish(command_id, PREPROCESSING_COMPLETE, {
                "processing_time": metrics.preprocessing_time,
            })

            if options is None:
                options = (TranscriptionOptions.from_segment(audio)
                           if isinstance(audio, AudioSegment) else TranscriptionOptions())
            if options.language is None and user_context.language:
                options = replace(options, language=user_context.language)

            stage_started = time.perf_counter()
            transcript = await self.transcription_service.transcribe(audio_data, options)
            metrics.transcription_time = time.perf_counter() - stage_started
            if not transcript.transcript.strip():
                raise TranscriptionError("Empty transcription result", {"command_id": command_id})
            self.events.publish(command_id, TRANSCRIPTION_COMPLETE, {
                "transcript": transcript.transcript,
                "confidence": transcript.confidence,
                "processing_time": metrics.transcription_time,
            })

            stage_started = time.perf_counter()
            command = await self.command_parser.parse(transcript.transcript, user_context)
            metrics.parsing_time = time.perf_counter() - stage_started
            self.events.publish(command_id, PARSING_COMPLETE, {
                "intent": command.intent,
                "action_count": len(command.actions),
                "confidence": command.confidence,
                "processing_time": metrics.parsing_time,
            })

            metrics.total_time = time.perf_counter() - started
            metrics.accuracy = min(transcript.confidence, command.confidence)
            metrics.action_count = len(command.actions)
            metrics.success = True
            self.metrics.append(metrics)
            self._check_performance_targets(command_id, metrics.total_time, metrics.action_count)

            logger.info(f"Voice command {command_id} completed in {metrics.total_time:.2f}s: "
                        f"'{command.intent}' with {metrics.action_count} actions")
            self.events.publish(command_id, PROCESSING_COMPLETE, {"success": True, "metrics": metrics})
            return ProcessingResult(success=True, metrics=metrics, command=command, transcript=transcript)

        except Exception as e:
            metrics.total_time = time.perf_counter() - started
            metrics.success = False
            metrics.error = str(e)
            self.metrics.append(metrics)

            logger.error(f"Voice command {command_id} failed after {metrics.total_time:.2f}s: {e}")
            self.events.publish(command_id, PROCESSING_ERROR, {"error": str(e), "metrics": metrics})
            return ProcessingResult(success=False, metrics=metrics, transcript=transcript, error=str(e))

    async def process_and_execute_voice_command(self, audio: Union[bytes, AudioSegment],
                                                user_context: UserContext,
                                                options: Optional[TranscriptionOptions] = None
                                                ) -> ProcessingResult:
        """Process a command and hand it to the executor.

        Execution time and outcome are folded into the run's metrics record.
        """
        started = time.perf_counter()
        result = await self.process_voice_command(audio, user_context, options)
        if not result.success or result.command is None:
            return result

        command = result.command
        metrics = result.metrics

        if not command.actions:
            metrics.total_time = time.perf_counter() - started
            return result

        if self.executor is None:
            logger.error(f"No command executor configured, cannot execute {command.id}")
            metrics.success = False
            metrics.error = "No command executor configured"
            return ProcessingResult(success=False, metrics=metrics, command=command,
                                    transcript=result.transcript, error=metrics.error)

        logger.info(f"Executing {command.id} with {len(command.actions)} actions")
        execution_started = time.perf_counter()
        try:
            execution = await self.executor.execute(command, user_context)
        except Exception as e:
            metrics.execution_time = time.perf_counter() - execution_started
            metrics.total_time = time.perf_counter() - started
            metrics.success = False
            metrics.error = f"Command execution failed: {e}"
            logger.error(f"Execution of {command.id} raised: {e}")
            return ProcessingResult(success=False, metrics=metrics, command=command,
                                    transcript=result.transcript, error=metrics.error)

        metrics.execution_time = time.perf_counter() - execution_started
        metrics.total_time = time.perf_counter() - started
        self.events.publish(metrics.command_id, COMMAND_EXECUTION_COMPLETE, {
            "success": execution.success,
            "execution_time": metrics.execution_time,
            "action_count": len(execution.executed_actions),
        })
        logger.info(f"Execution of {command.id} finished in {metrics.execution_time:.2f}s: "
                    f"{len(execution.executed_actions)} succeeded, {len(execution.failed_actions)} failed")

        if not execution.success:
            metrics.success = False
            metrics.error = "Command execution failed"
            return ProcessingResult(success=False, metrics=metrics, command=command,
                                    transcript=result.transcript, execution_result=execution,
                                    error=metrics.error)

        return ProcessingResult(success=True, metrics=metrics, command=command,
                                transcript=result.transcript, execution_result=execution)

    async def process_streaming_audio(self, chunks: AsyncIterable[bytes],
                                      user_context: UserContext) -> AsyncIterator[StreamingCommandUpdate]:
        """Yield partial commands as streamed audio is transcribed.

        Fragments that fail to parse are skipped; transcription failures are
        yielded as error updates.
        """
        stream_id = f"stream-{int(time.time() * 1000)}"
        logger.info(f"Starting streaming command processing {stream_id} for {user_context.user_id}")

        options = TranscriptionOptions(language=user_context.language)
        try:
            async for partial in self.transcription_service.transcribe_stream(chunks, options):
                if partial.error:
                    yield StreamingCommandUpdate(transcript="", intent=None, confidence=0.0, error=partial.error)
                    continue
                if not partial.transcript.strip():
                    continue
                try:
                    command = await self.command_parser.parse(partial.transcript, user_context)
                except Exception as e:
                    logger.warning(f"Partial command parsing failed in {stream_id}: {e}")
                    continue

                yield StreamingCommandUpdate(
                    transcript=partial.transcript,
                    intent=command.intent,
                    confidence=min(partial.confidence or DEFAULT_STREAM_CONFIDENCE, command.confidence),
                    actions=list(command.actions[:STREAMING_ACTION_LIMIT]),
                )
        except Exception as e:
            logger.error(f"Streaming command processing {stream_id} failed: {e}")
            yield StreamingCommandUpdate(transcript="", intent=None, confidence=0.0, error=str(e))

    def _check_performance_targets(self, command_id: str, total_time: float, action_count: int) -> None:
        if action_count <= SIMPLE_COMMAND_MAX_ACTIONS and total_time > SIMPLE_COMMAND_TARGET_SECONDS:
            logger.warning(f"Performance target missed: simple command {command_id} took "
                           f"{total_time:.2f}s (target {SIMPLE_COMMAND_TARGET_SECONDS}s)")
        if action_count > SIMPLE_COMMAND_MAX_ACTIONS and total_time > COMPLEX_COMMAND_TARGET_SECONDS:
            logger.warning(f"Performance target missed: complex command {command_id} took "
                           f"{total_time:.2f}s (target {COMPLEX_COMMAND_TARGET_SECONDS}s)")

    def _overall_stats(self) -> Dict[str, float]:
        runs = list(self.metrics)
        if not runs:
            return {
                "total_commands": 0,
                "successful_commands": 0,
                "success_rate": 0.0,
                "average_processing_time": 0.0,
                "average_transcription_time": 0.0,
                "average_parsing_time": 0.0,
                "p95_processing_time": 0.0,
                "p99_processing_time": 0.0,
            }

        successful = [m for m in runs if m.success]
        times = sorted(m.total_time for m in runs)
        return {
            "total_commands": len(runs),
            "successful_commands": len(successful),
            "success_rate": len(successful) / len(runs),
            "average_processing_time": sum(times) / len(times),
            "average_transcription_time": sum(m.transcription_time for m in successful) / max(len(successful), 1),
            "average_parsing_time": sum(m.parsing_time for m in successful) / max(len(successful), 1),
            "p95_processing_time": percentile(times, 0.95),
            "p99_processing_time": percentile(times, 0.99),
        }

    def get_performance_statistics(self) -> Dict[str, Any]:
        return {
            "overall": self._overall_stats(),
            "transcription": self.transcription_service.get_performance_stats(),
            "parsing": self.command_parser.get_performance_stats(),
        }

    def get_health_status(self) -> Dict[str, Any]:
        """Combine pipeline latency, success rate and transcription health."""
        overall = self._overall_stats()
        transcription = self.transcription_service.get_health_status()

        status = "healthy"
        if overall["average_processing_time"] > 5.0:
            status = "unhealthy"
        elif overall["average_processing_time"] > 3.0:
            status = "degraded"

        if overall["total_commands"]:
            if overall["success_rate"] < 0.9:
                status = "unhealthy"
            elif overall["success_rate"] < 0.95 and status == "healthy":
                status = "degraded"

        if transcription["status"] == "unhealthy":
            status = "unhealthy"
        elif transcription["status"] == "degraded" and status == "healthy":
            status = "degraded"

        return {
            "status": status,
            "components": {
                "transcription": transcription,
                "parsing": self.command_parser.get_performance_stats(),
            },
            "metrics": overall,
        }
