"""Per-command pipeline metrics and results."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from .command import CommandAction, ParsedCommand
from .transcription import TranscriptResult


@dataclass
class PipelineMetrics:
    """Timing and outcome of one pipeline run. Times are in seconds."""
    command_id: str
    user_id: str
    preprocessing_time: float = 0.0
    transcription_time: float = 0.0
    parsing_time: float = 0.0
    execution_time: float = 0.0
    total_time: float = 0.0
    accuracy: float = 0.0
    success: bool = False
    action_count: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None


@dataclass
class ExecutionResult:
    """Outcome reported by a downstream command executor."""
    success: bool
    executed_actions: List[str] = field(default_factory=list)
    failed_actions: List[str] = field(default_factory=list)
    details: Any = None


@dataclass
class ProcessingResult:
    """Everything known about one pipeline run, successful or not."""
    success: bool
    metrics: PipelineMetrics
    command: Optional[ParsedCommand] = None
    transcript: Optional[TranscriptResult] = None
    execution_result: Optional[ExecutionResult] = None
    error: Optional[str] = None


@dataclass
class StreamingCommandUpdate:
    """Partial command parsed from one streamed transcript fragment."""
    transcript: str
    intent: Optional[str]
    confidence: float
    actions: List[CommandAction] = field(default_factory=list)
    partial: bool = True
    error: Optional[str] = None
