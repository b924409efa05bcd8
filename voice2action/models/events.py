"""Pipeline lifecycle event models for pub/sub notification."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

# Topic names, published as "pipeline.<stage>"
TOPIC_ROOT = "pipeline"
PREPROCESSING_COMPLETE = "preprocessing_complete"
TRANSCRIPTION_COMPLETE = "transcription_complete"
PARSING_COMPLETE = "parsing_complete"
PROCESSING_COMPLETE = "processing_complete"
PROCESSING_ERROR = "processing_error"
COMMAND_EXECUTION_COMPLETE = "command_execution_complete"

PIPELINE_STAGES = (
    PREPROCESSING_COMPLETE,
    TRANSCRIPTION_COMPLETE,
    PARSING_COMPLETE,
    PROCESSING_COMPLETE,
    PROCESSING_ERROR,
    COMMAND_EXECUTION_COMPLETE,
)


def topic_for(stage: str) -> str:
    return f"{TOPIC_ROOT}.{stage}"


@dataclass
class PipelineEvent:
    """Stage completion notice for one command."""
    command_id: str
    stage: str
    timestamp: datetime = field(default_factory=datetime.now)
    data: Dict[str, Any] = field(default_factory=dict)
