"""Main application entry point for Voice2Action."""

import sys
import asyncio
import argparse
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from voice2action.commands.llm_client import ChatCompletionClient
from voice2action.commands.parser import CommandParser
from voice2action.context.aggregator import ContextAggregator
from voice2action.context.entity_resolver import EntityResolver
from voice2action.context.temporal import TemporalResolver
from voice2action.fixtures import WorkspaceQueryExecutor
from voice2action.models.context import UserContext
from voice2action.services.event_publisher import PipelineEventPublisher
from voice2action.services.orchestrator import PipelineOrchestrator
from voice2action.services.transcription_service import TranscriptionService
from voice2action.storage.kv_store import InMemoryKeyValueStore, KeyValueStore
from voice2action.storage.query import CommandExecutor, QueryExecutor
from voice2action.transcription.cache import TranscriptionCache
from voice2action.transcription.pool import ConnectionPool
from voice2action.transcription.whisper_backend import WhisperBackend
from voice2action.ui.command_view import CommandView

from .config import VoiceCommandConfig

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Wired-up pipeline components."""
    transcription: TranscriptionService
    parser: Optional[CommandParser]
    orchestrator: Optional[PipelineOrchestrator]

    async def start(self) -> None:
        await self.transcription.start()

    async def shutdown(self) -> None:
        await self.transcription.shutdown()


def build_transcription_service(config: VoiceCommandConfig, store: KeyValueStore) -> TranscriptionService:
    backend = WhisperBackend(
        api_key=config.get_openai_api_key(),
        base_url=config.get('openai.base_url'),
        model=config.get('openai.transcription_model'),
        request_timeout=config.get('transcription.request_timeout_seconds'),
    )
    pool = ConnectionPool(
        connection_factory=backend.create_session,
        health_check=backend.ping,
        pool_size=config.get('transcription.pool_size'),
        acquire_timeout=config.get('transcription.acquire_timeout_seconds'),
        health_check_interval=config.get('transcription.health_check_interval_seconds'),
    )
    cache = TranscriptionCache(store, default_ttl=config.get('transcription.cache_ttl_seconds'))
    return TranscriptionService(
        backend,
        pool,
        cache,
        request_timeout=config.get('transcription.request_timeout_seconds'),
        max_retries=config.get('transcription.max_retries'),
        cache_confidence_threshold=config.get('transcription.cache_confidence_threshold'),
        cache_ttl=config.get('transcription.cache_ttl_seconds'),
        batch_concurrency=config.get('transcription.batch_concurrency'),
        batch_delay=config.get('transcription.batch_delay_seconds'),
        stream_min_bytes=config.get('transcription.stream_min_bytes'),
        stream_vad=config.get('transcription.stream_vad'),
    )


def build_command_parser(config: VoiceCommandConfig, query_executor: QueryExecutor,
                         store: KeyValueStore) -> CommandParser:
    temporal_resolver = TemporalResolver()
    entity_resolver = EntityResolver(query_executor)
    aggregator = ContextAggregator(
        query_executor,
        store,
        temporal_resolver=temporal_resolver,
        entity_resolver=entity_resolver,
        cache_ttl=config.get('context.cache_ttl_seconds'),
        max_recent_tasks=config.get('context.max_recent_tasks'),
        max_recent_channels=config.get('context.max_recent_channels'),
        max_team_members=config.get('context.max_team_members'),
        organization_name=config.get('context.organization_name'),
    )
    llm_client = ChatCompletionClient(
        api_key=config.get_openai_api_key(),
        model=config.get('openai.chat_model'),
        base_url=config.get('openai.base_url'),
        timeout=config.get('parsing.timeout_seconds'),
    )
    return CommandParser(
        llm_client,
        aggregator,
        entity_resolver=entity_resolver,
        temporal_resolver=temporal_resolver,
        max_retries=config.get('parsing.max_retries'),
        timeout=config.get('parsing.timeout_seconds'),
        temperature=config.get('parsing.temperature'),
        max_tokens=config.get('parsing.max_tokens'),
        prompt_cache_ttl=config.get('parsing.prompt_cache_ttl_seconds'),
    )


def build_pipeline(config: VoiceCommandConfig, query_executor: Optional[QueryExecutor] = None,
                   store: Optional[KeyValueStore] = None,
                   executor: Optional[CommandExecutor] = None) -> Pipeline:
    """Wire every component from configuration.

    Without a query executor only transcription is available.
    """
    store = store or InMemoryKeyValueStore()
    transcription = build_transcription_service(config, store)
    if query_executor is None:
        return Pipeline(transcription=transcription, parser=None, orchestrator=None)

    parser = build_command_parser(config, query_executor, store)
    orchestrator = PipelineOrchestrator(transcription, parser, executor=executor,
                                        event_publisher=PipelineEventPublisher())
    return Pipeline(transcription=transcription, parser=parser, orchestrator=orchestrator)


def setup_logging(config, level: str = "INFO") -> None:
    """Set up logging configuration from YAML config."""
    log_file_path = config.get('logging.file_path', 'data/logs/voice2action.log')
    console_output = config.get('logging.console_output', True)

    Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)

    handlers = []

    # File handler - always write to file
    file_handler = logging.FileHandler(log_file_path)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)  # Only show warnings and above on console
        console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(console_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in handlers:
        root_logger.addHandler(handler)

    logger.info("=" * 50)
    logger.info("Voice2Action starting up")
    logger.info(f"Log file: {log_file_path}")
    logger.info(f"Log level set to: {level}")
    logger.info("=" * 50)


def _read_audio(path: str) -> bytes:
    audio_file = Path(path)
    if not audio_file.exists():
        raise FileNotFoundError(f"Audio file not found: {audio_file}")
    return audio_file.read_bytes()


async def run_transcribe(config: VoiceCommandConfig, args: argparse.Namespace, view: CommandView) -> int:
    pipeline = build_pipeline(config)
    await pipeline.start()
    try:
        result = await pipeline.transcription.transcribe(_read_audio(args.file))
        view.show_transcript(result)
        return 0
    finally:
        await pipeline.shutdown()


async def run_parse(config: VoiceCommandConfig, args: argparse.Namespace, view: CommandView) -> int:
    store = InMemoryKeyValueStore()
    parser = build_command_parser(config, WorkspaceQueryExecutor.from_yaml(args.workspace), store)
    user_context = UserContext(user_id=args.user, organization_id=args.org, timezone=args.timezone)
    command = await parser.parse(args.text, user_context)
    view.show_command(command)
    return 0


async def run_process(config: VoiceCommandConfig, args: argparse.Namespace, view: CommandView) -> int:
    pipeline = build_pipeline(config, WorkspaceQueryExecutor.from_yaml(args.workspace))
    user_context = UserContext(user_id=args.user, organization_id=args.org, timezone=args.timezone)
    await pipeline.start()
    try:
        result = await pipeline.orchestrator.process_voice_command(_read_audio(args.file), user_context)
        view.show_result(result)
        return 0 if result.success else 1
    finally:
        await pipeline.shutdown()


def run_resolve_date(args: argparse.Namespace, view: CommandView) -> int:
    resolver = TemporalResolver()
    context = resolver.get_current_temporal_context(args.timezone)
    view.show_dates(args.text, resolver.resolve_dates_in_text(args.text, context))
    return 0


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Voice2Action - turn spoken commands into structured actions"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration YAML file (default: voice2action.yaml if present)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (overrides config)"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="Voice2Action v0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser("transcribe", help="Transcribe an audio file")
    transcribe.add_argument("file", help="WAV file to transcribe")

    for name, help_text in (("parse", "Parse a text command"), ("process", "Transcribe and parse an audio file")):
        sub = subparsers.add_parser(name, help=help_text)
        if name == "parse":
            sub.add_argument("text", help="Command text")
        else:
            sub.add_argument("file", help="WAV file with the spoken command")
        sub.add_argument("--user", required=True, help="Speaking user id")
        sub.add_argument("--org", required=True, help="Organization id")
        sub.add_argument("--workspace", default="workspace.yaml",
                         help="YAML file with users, channels and tasks (default: workspace.yaml)")
        sub.add_argument("--timezone", default="UTC", help="IANA timezone of the user")

    resolve = subparsers.add_parser("resolve-date", help="Resolve date expressions in text")
    resolve.add_argument("text", help="Text containing date expressions")
    resolve.add_argument("--timezone", default="UTC", help="IANA timezone used as 'now'")

    return parser


def main() -> None:
    """Main entry point for Voice2Action."""
    args = create_parser().parse_args()

    config = VoiceCommandConfig(args.config)
    setup_logging(config, args.log_level or config.get('logging.level', 'INFO'))
    view = CommandView()

    try:
        if args.command == "resolve-date":
            exit_code = run_resolve_date(args, view)
        elif args.command == "transcribe":
            exit_code = asyncio.run(run_transcribe(config, args, view))
        elif args.command == "parse":
            exit_code = asyncio.run(run_parse(config, args, view))
        else:
            exit_code = asyncio.run(run_process(config, args, view))
    except KeyboardInterrupt:
        print("\nInterrupted")
        exit_code = 130
    except Exception as e:
        view.show_error(str(e))
        logging.error(f"Application error: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
