"""Validation models for language-understanding output.

The chat-completion endpoint is untrusted, so its JSON is checked here before
anything downstream sees it. Each action type has its own parameter record;
unknown extra keys are kept so the executor can still use them.
"""

from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .command import ActionType


class ActionParameters(BaseModel):
    model_config = ConfigDict(extra="allow")

    @model_validator(mode="before")
    @classmethod
    def _none_collections(cls, data: Any) -> Any:
        # Models answer null for empty lists and filters; treat that as the default
        if not isinstance(data, dict):
            return data
        cleaned = dict(data)
        for name, field in cls.model_fields.items():
            if name in cleaned and cleaned[name] is None and field.default_factory is not None:
                cleaned[name] = field.default_factory()
        return cleaned


class CreateChannelParameters(ActionParameters):
    name: str
    description: Optional[str] = None
    category_id: Optional[str] = None
    channel_type: Optional[str] = None
    privacy_level: Optional[str] = None


class CreateTaskParameters(ActionParameters):
    title: str
    description: Optional[str] = None
    channel_id: Optional[str] = None
    assigned_to: List[str] = Field(default_factory=list)
    priority: Optional[Union[str, int]] = None
    due_date: Optional[str] = None


class AssignUsersParameters(ActionParameters):
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_ids: List[str] = Field(default_factory=list)
    role: Optional[str] = None


class SendMessageParameters(ActionParameters):
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    content: Optional[str] = None
    message_type: Optional[str] = None


class UploadFileParameters(ActionParameters):
    file_name: Optional[str] = None
    description: Optional[str] = None
    target_channels: List[str] = Field(default_factory=list)
    target_tasks: List[str] = Field(default_factory=list)


class SetDeadlineParameters(ActionParameters):
    task_id: Optional[str] = None
    due_date: Optional[str] = None
    priority: Optional[Union[str, int]] = None


class CreateDependencyParameters(ActionParameters):
    task_id: Optional[str] = None
    depends_on_task_id: Optional[str] = None
    dependency_type: Optional[str] = None


class UpdateStatusParameters(ActionParameters):
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None


class ScheduleMeetingParameters(ActionParameters):
    title: Optional[str] = None
    date_time: Optional[str] = None
    duration: Optional[Union[str, int]] = None
    attendees: List[str] = Field(default_factory=list)
    location: Optional[str] = None


class GenerateReportParameters(ActionParameters):
    report_type: Optional[str] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
    output_format: Optional[str] = None


ACTION_PARAMETER_MODELS: Dict[ActionType, Type[ActionParameters]] = {
    ActionType.CREATE_CHANNEL: CreateChannelParameters,
    ActionType.CREATE_TASK: CreateTaskParameters,
    ActionType.ASSIGN_USERS: AssignUsersParameters,
    ActionType.SEND_MESSAGE: SendMessageParameters,
    ActionType.UPLOAD_FILE: UploadFileParameters,
    ActionType.SET_DEADLINE: SetDeadlineParameters,
    ActionType.CREATE_DEPENDENCY: CreateDependencyParameters,
    ActionType.UPDATE_STATUS: UpdateStatusParameters,
    ActionType.SCHEDULE_MEETING: ScheduleMeetingParameters,
    ActionType.GENERATE_REPORT: GenerateReportParameters,
}


def validate_action_parameters(action_type: ActionType, parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Check parameters against the record for ``action_type``.

    Returns:
        The parameters with known fields coerced and extra keys preserved

    Raises:
        pydantic.ValidationError: If a required field is missing or mistyped
    """
    model = ACTION_PARAMETER_MODELS[action_type]
    return model.model_validate(parameters).model_dump(exclude_unset=True)


class RawAction(BaseModel):
    """One action as returned by the language-understanding endpoint."""
    model_config = ConfigDict(extra="ignore")

    type: str
    parameters: Dict[str, Any]
    priority: Optional[int] = None
    dependencies: List[str] = Field(default_factory=list)
    estimated_duration: Optional[str] = None

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in ActionType.values():
            raise ValueError(f"Invalid action type: {value}")
        return value

    @field_validator("priority", mode="before")
    @classmethod
    def _lenient_priority(cls, value: Any) -> Optional[int]:
        # Models sometimes answer "high" here; fall back to positional priority
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return None

    @field_validator("dependencies", mode="before")
    @classmethod
    def _none_dependencies(cls, value: Any) -> Any:
        return [] if value is None else value


class RawCommandResponse(BaseModel):
    """Top-level JSON object expected from the language-understanding endpoint."""
    model_config = ConfigDict(extra="ignore")

    intent: str
    confidence: float
    actions: List[RawAction] = Field(min_length=1)
    entities: Dict[str, Any] = Field(default_factory=dict)
    context_references: Optional[Dict[str, Any]] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("confidence must be a number")
        return value

    @field_validator("entities", mode="before")
    @classmethod
    def _none_entities(cls, value: Any) -> Any:
        return {} if value is None else value
