"""Turns transcripts into validated, executable commands."""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from ..context.aggregator import ContextAggregator
from ..context.entity_resolver import EntityResolver
from ..context.temporal import TemporalResolver
from ..errors import (
    CommandParsingError,
    InputValidationError,
    MalformedResponseError,
    TranscriptValidationError,
    TransientUpstreamError,
    UpstreamTimeoutError,
)
from ..metrics import PerformanceTracker
from ..models.actions import RawAction, RawCommandResponse, validate_action_parameters
from ..models.command import (
    CRITICAL_ACTION_TYPES,
    ActionType,
    CommandAction,
    ContextReferences,
    ParsedCommand,
    ResolvedDateEntity,
    ResolvedEntities,
)
from ..models.context import ContextData, UserContext
from ..retry import call_with_retries
from .llm_client import LanguageModelClient
from .prompts import PromptCache, build_system_prompt, build_user_prompt

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_LENGTH = 5000
MALFORMED_EXCERPT_LENGTH = 500
DEFAULT_ESTIMATED_DURATION = "2 seconds"


@dataclass
class ParseOptions:
    """Per-call overrides for the language-understanding request."""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


def validate_parse_input(transcript: str, user_context: UserContext) -> None:
    """Raise ``TranscriptValidationError`` for input that cannot be parsed."""
    if not transcript or not transcript.strip():
        raise TranscriptValidationError("Transcript is empty")
    if len(transcript) > MAX_TRANSCRIPT_LENGTH:
        raise TranscriptValidationError(
            f"Transcript too long (max {MAX_TRANSCRIPT_LENGTH} characters)",
            {"length": len(transcript)},
        )
    if user_context is None or not user_context.user_id or not user_context.organization_id:
        raise TranscriptValidationError("User context requires user_id and organization_id")


class CommandParser:
    """Parses a transcript into a ``ParsedCommand`` using live context.

    The language model proposes intent, actions and entities; everything it
    returns is validated, normalized and re-resolved here before a command is
    produced.
    """

    def __init__(
        self,
        llm_client: LanguageModelClient,
        context_aggregator: ContextAggregator,
        entity_resolver: Optional[EntityResolver] = None,
        temporal_resolver: Optional[TemporalResolver] = None,
        max_retries: int = 2,
        timeout: float = 15.0,
        temperature: float = 0.1,
        max_tokens: int = 2000,
        prompt_cache_ttl: float = 300.0,
        batch_size: int = 3,
        batch_delay: float = 0.2,
        retry_delays: Optional[Dict[str, float]] = None,
    ):
        """Initialize command parser.

        Args:
            llm_client: Chat-completion client returning JSON text
            context_aggregator: Source of per-user context snapshots
            entity_resolver: Re-resolves extracted entities, defaults to the aggregator's
            temporal_resolver: Fills in unresolved date entities, defaults to the aggregator's
            max_retries: Total attempts for rate-limited or timed-out requests
            timeout: Hard timeout for one request in seconds
            temperature: Default sampling temperature
            max_tokens: Completion token cap
            prompt_cache_ttl: Seconds a system prompt is reused per user/organization
            batch_size: Commands parsed at once by ``parse_multiple_commands``
            batch_delay: Pause between batch groups in seconds
            retry_delays: Optional ``rate_limit``/``timeout`` backoff overrides
        """
        self.llm_client = llm_client
        self.context_aggregator = context_aggregator
        self.entity_resolver = entity_resolver or context_aggregator.entity_resolver
        self.temporal_resolver = temporal_resolver or context_aggregator.temporal_resolver
        self.max_retries = max_retries
        self.timeout = timeout
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.retry_delays = retry_delays or {}

        self.prompt_cache = PromptCache(ttl=prompt_cache_ttl)
        self.performance = PerformanceTracker()
        self.success_count = 0
        self.error_count = 0
        self._request_ids = itertools.count(1)

        logger.info(f"CommandParser initialized (timeout={timeout}s, retries={max_retries})")

    async def parse(self, transcript: str, user_context: UserContext,
                    options: Optional[ParseOptions] = None) -> ParsedCommand:
        """Parse one transcript.

        Args:
            transcript: Text of the spoken command
            user_context: Who is speaking, and in which organization
            options: Per-call request overrides

        Returns:
            ParsedCommand with normalized actions and resolved entities

        Raises:
            TranscriptValidationError: For empty or oversized input
            MalformedResponseError: If the model output is not valid command JSON
            TransientUpstreamError: If every attempt was rate limited or timed out
            CommandParsingError: Any other failure, with request context
        """
        options = options or ParseOptions()
        request_id = f"parse-{next(self._request_ids)}-{int(time.time() * 1000)}"
        started = time.perf_counter()

        validate_parse_input(transcript, user_context)

        try:
            context = await self.context_aggregator.build_context(user_context)
            system_prompt = self._system_prompt(user_context, context)
            user_prompt = build_user_prompt(transcript)

            content = await call_with_retries(
                lambda: self._request(system_prompt, user_prompt, options),
                max_attempts=self.max_retries,
                description=f"Parse {request_id}",
                rate_limit_delay=self.retry_delays.get("rate_limit", 1.0),
                timeout_delay=self.retry_delays.get("timeout", 0.5),
            )
            response = self._validate_response(content)

            actions = self._normalize_actions(response.actions)
            entities = await self.entity_resolver.validate_and_enhance_entities(response.entities, context)
            entities = self._resolve_missing_dates(entities, context)

            processing_time = time.perf_counter() - started
            command = ParsedCommand(
                id=request_id,
                user_id=user_context.user_id,
                transcript=transcript,
                original_transcript=transcript,
                intent=response.intent,
                confidence=max(0.0, min(1.0, float(response.confidence))),
                actions=actions,
                entities=entities,
                context_references=self._context_references(response.context_references),
                processing_time=processing_time,
            )

            self.performance.record("parsing_time", processing_time)
            self.success_count += 1
            logger.info(f"Parsed {request_id} in {processing_time:.2f}s: '{command.intent}' "
                        f"with {len(actions)} actions (confidence {command.confidence:.2f})")
            return command

        except (InputValidationError, MalformedResponseError, TransientUpstreamError) as e:
            self._record_failure(request_id, started, e)
            e.context.setdefault("request_id", request_id)
            raise
        except Exception as e:
            processing_time = self._record_failure(request_id, started, e)
            raise CommandParsingError("Failed to parse voice command", {
                "request_id": request_id,
                "transcript": transcript[:100],
                "user_id": user_context.user_id,
                "processing_time": processing_time,
                "original_error": str(e),
            }) from e

    def _system_prompt(self, user_context: UserContext, context: ContextData) -> str:
        prompt = self.prompt_cache.get(user_context.user_id, user_context.organization_id)
        if prompt is None:
            prompt = build_system_prompt(context)
            self.prompt_cache.put(user_context.user_id, user_context.organization_id, prompt)
        return prompt

    async def _request(self, system_prompt: str, user_prompt: str, options: ParseOptions) -> str:
        temperature = options.temperature if options.temperature is not None else self.temperature
        max_tokens = options.max_tokens or self.max_tokens
        try:
            return await asyncio.wait_for(
                self.llm_client.complete_json(system_prompt, user_prompt,
                                              temperature=temperature, max_tokens=max_tokens),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamTimeoutError(f"Command parsing timed out after {self.timeout}s") from e

    def _validate_response(self, content: str) -> RawCommandResponse:
        try:
            return RawCommandResponse.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Malformed parser response: {e.error_count()} validation errors")
            raise MalformedResponseError("Invalid response from language model", {
                "content": (content or "")[:MALFORMED_EXCERPT_LENGTH],
                "errors": [err.get("msg") for err in e.errors()],
            }) from e

    def _normalize_actions(self, raw_actions: Sequence[RawAction]) -> Tuple[CommandAction, ...]:
        stamp = int(time.time() * 1000)
        actions = []
        for index, raw in enumerate(raw_actions):
            action_type = ActionType(raw.type)
            try:
                parameters = validate_action_parameters(action_type, raw.parameters)
            except ValidationError as e:
                raise MalformedResponseError(f"Invalid parameters for {action_type.value}", {
                    "action_index": index,
                    "errors": [err.get("msg") for err in e.errors()],
                }) from e

            actions.append(CommandAction(
                id=f"action-{index + 1}-{stamp}",
                type=action_type,
                parameters=parameters,
                priority=raw.priority if raw.priority is not None else index + 1,
                dependencies=tuple(str(d) for d in raw.dependencies),
                estimated_duration=raw.estimated_duration or DEFAULT_ESTIMATED_DURATION,
                critical=action_type in CRITICAL_ACTION_TYPES,
                order=index,
                validated=True,
            ))
        return tuple(actions)

    def _resolve_missing_dates(self, entities: ResolvedEntities, context: ContextData) -> ResolvedEntities:
        if not any(d.resolved_date is None for d in entities.dates):
            return entities

        dates = []
        for entity in entities.dates:
            if entity.resolved_date is None:
                resolved = self.temporal_resolver.resolve_date(entity.text, context.temporal)
                if resolved is not None:
                    entity = ResolvedDateEntity(
                        text=entity.text,
                        resolved_date=resolved.date,
                        confidence=min(entity.confidence, resolved.confidence),
                    )
            dates.append(entity)

        return ResolvedEntities(
            users=entities.users,
            channels=entities.channels,
            tasks=entities.tasks,
            dates=tuple(dates),
            files=entities.files,
        )

    @staticmethod
    def _context_references(raw: Optional[Mapping[str, Any]]) -> ContextReferences:
        raw = raw or {}

        def strings(key: str) -> Tuple[str, ...]:
            value = raw.get(key) or []
            if isinstance(value, str):
                return (value,)
            return tuple(str(v) for v in value)

        return ContextReferences(
            pronouns=strings("pronouns"),
            temporal_context=strings("temporal_context"),
            implicit_entities=strings("implicit_entities"),
        )

    def _record_failure(self, request_id: str, started: float, error: Exception) -> float:
        processing_time = time.perf_counter() - started
        self.performance.record("parsing_time", processing_time)
        self.error_count += 1
        logger.error(f"Parse {request_id} failed after {processing_time:.2f}s: {error}")
        return processing_time

    async def parse_multiple_commands(
        self, commands: List[Tuple[str, UserContext]]
    ) -> List[ParsedCommand]:
        """Parse several transcripts a few at a time, preserving order.

        A command that fails becomes a ``PARSE_ERROR`` placeholder with zero
        confidence and no actions.
        """
        results: List[ParsedCommand] = []
        stamp = int(time.time() * 1000)

        for i in range(0, len(commands), self.batch_size):
            group = commands[i:i + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.parse(transcript, user_context) for transcript, user_context in group),
                return_exceptions=True,
            )
            for offset, outcome in enumerate(outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    transcript, user_context = group[offset]
                    results.append(ParsedCommand.parse_error(
                        command_id=f"error-{i + offset}-{stamp}",
                        user_id=user_context.user_id if user_context else "",
                        transcript=transcript or "",
                        error=str(outcome),
                    ))
                else:
                    results.append(outcome)

            if i + self.batch_size < len(commands):
                await asyncio.sleep(self.batch_delay)

        return results

    def get_performance_stats(self) -> Dict[str, Any]:
        total = self.success_count + self.error_count
        return {
            "parsing_time": self.performance.summary("parsing_time"),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "success_rate": self.success_count / total if total else 0.0,
            "prompt_cache_size": len(self.prompt_cache),
        }

    def clear_metrics(self) -> None:
        self.performance.clear()
        self.success_count = 0
        self.error_count = 0
        self.prompt_cache.clear()
        logger.debug("Parser metrics cleared")
