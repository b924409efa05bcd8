"""Structured command models produced by the parser."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ActionType(str, Enum):
    """The closed set of actions an executor knows how to run."""
    CREATE_CHANNEL = "CREATE_CHANNEL"
    CREATE_TASK = "CREATE_TASK"
    ASSIGN_USERS = "ASSIGN_USERS"
    SEND_MESSAGE = "SEND_MESSAGE"
    UPLOAD_FILE = "UPLOAD_FILE"
    SET_DEADLINE = "SET_DEADLINE"
    CREATE_DEPENDENCY = "CREATE_DEPENDENCY"
    UPDATE_STATUS = "UPDATE_STATUS"
    SCHEDULE_MEETING = "SCHEDULE_MEETING"
    GENERATE_REPORT = "GENERATE_REPORT"

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]


# Failure of any of these aborts the whole command
CRITICAL_ACTION_TYPES = frozenset({
    ActionType.CREATE_CHANNEL,
    ActionType.CREATE_TASK,
    ActionType.ASSIGN_USERS,
    ActionType.CREATE_DEPENDENCY,
})


@dataclass(frozen=True)
class CommandAction:
    """One executable step of a parsed command."""
    id: str
    type: ActionType
    parameters: Dict[str, Any]
    priority: int
    dependencies: Tuple[str, ...] = ()
    estimated_duration: str = "2 seconds"
    critical: bool = False
    order: int = 0
    validated: bool = False

    def __post_init__(self):
        if not isinstance(self.type, ActionType):
            raise ValueError(f"Unknown action type: {self.type}")
        if self.parameters is None:
            raise ValueError("Action parameters must not be None")


@dataclass(frozen=True)
class ResolvedEntity:
    """A user, channel, task or file mention bound to a concrete id."""
    source_text: str
    resolved_id: Optional[str]
    confidence: float


@dataclass(frozen=True)
class ResolvedDateEntity:
    text: str
    resolved_date: Optional[datetime]
    confidence: float


@dataclass(frozen=True)
class ResolvedEntities:
    users: Tuple[ResolvedEntity, ...] = ()
    channels: Tuple[ResolvedEntity, ...] = ()
    tasks: Tuple[ResolvedEntity, ...] = ()
    dates: Tuple[ResolvedDateEntity, ...] = ()
    files: Tuple[ResolvedEntity, ...] = ()


@dataclass(frozen=True)
class ContextReferences:
    """Phrases in the transcript that leaned on context."""
    pronouns: Tuple[str, ...] = ()
    temporal_context: Tuple[str, ...] = ()
    implicit_entities: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ParsedCommand:
    """Finished, immutable command handed to an executor."""
    id: str
    user_id: str
    transcript: str
    original_transcript: str
    intent: str
    confidence: float
    actions: Tuple[CommandAction, ...]
    entities: ResolvedEntities = field(default_factory=ResolvedEntities)
    context_references: Optional[ContextReferences] = None
    processing_time: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Command confidence out of range: {self.confidence}")

    @classmethod
    def parse_error(cls, command_id: str, user_id: str, transcript: str, error: str) -> "ParsedCommand":
        """Zero-confidence placeholder for a command that failed to parse."""
        return cls(
            id=command_id,
            user_id=user_id,
            transcript=transcript,
            original_transcript=transcript,
            intent="PARSE_ERROR",
            confidence=0.0,
            actions=(),
            error=error,
        )
