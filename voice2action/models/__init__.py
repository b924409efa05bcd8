"""Data models for the Voice2Action pipeline."""

from .audio import AudioSegment, TranscriptionOptions
from .transcription import TranscriptResult, TranscriptSegment, WordTiming
from .context import (
    UserContext,
    UserInfo,
    OrganizationInfo,
    ChannelSummary,
    TaskSummary,
    TeamMember,
    TemporalContext,
    ContextData,
)
from .command import (
    ActionType,
    CommandAction,
    ResolvedEntity,
    ResolvedDateEntity,
    ResolvedEntities,
    ContextReferences,
    ParsedCommand,
)
from .events import PipelineEvent
from .metrics import PipelineMetrics, ExecutionResult, ProcessingResult, StreamingCommandUpdate

__all__ = [
    "AudioSegment",
    "TranscriptionOptions",
    "TranscriptResult",
    "TranscriptSegment",
    "WordTiming",
    # Context snapshot
    "UserContext",
    "UserInfo",
    "OrganizationInfo",
    "ChannelSummary",
    "TaskSummary",
    "TeamMember",
    "TemporalContext",
    "ContextData",
    # Commands
    "ActionType",
    "CommandAction",
    "ResolvedEntity",
    "ResolvedDateEntity",
    "ResolvedEntities",
    "ContextReferences",
    "ParsedCommand",
    # Pipeline
    "PipelineEvent",
    "PipelineMetrics",
    "ExecutionResult",
    "ProcessingResult",
    "StreamingCommandUpdate",
]
