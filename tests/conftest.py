"""Pytest configuration and fixtures for Voice2Action tests."""

import io
import json
import logging
import wave
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import numpy as np
import pytest

from voice2action.context.aggregator import ContextAggregator
from voice2action.context.entity_resolver import EntityResolver
from voice2action.context.temporal import TemporalResolver
from voice2action.fixtures import WorkspaceQueryExecutor
from voice2action.models.audio import TranscriptionOptions
from voice2action.models.context import (
    ChannelSummary,
    ContextData,
    OrganizationInfo,
    TaskSummary,
    TeamMember,
    TemporalContext,
    UserContext,
    UserInfo,
)
from voice2action.storage.kv_store import InMemoryKeyValueStore
from voice2action.transcription.base import AbstractTranscriptionBackend
from voice2action.transcription.cache import TranscriptionCache
from voice2action.transcription.pool import ConnectionPool


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Wednesday
FIXED_NOW = datetime(2024, 1, 17, 10, 0, 0, tzinfo=timezone.utc)


class FakeSession:
    """Stands in for an aiohttp session; only ``close`` is ever called on it."""

    def __init__(self, number: int):
        self.number = number
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class FakeTranscriptionBackend(AbstractTranscriptionBackend):
    """Backend returning scripted responses.

    Each entry of ``responses`` is a payload dict, an exception to raise, or a
    callable taking the audio bytes. The last entry repeats once exhausted.
    """

    def __init__(self, responses: Optional[List[Any]] = None, healthy: bool = True):
        super().__init__("fake-whisper")
        self.responses = list(responses or [{"text": "hello world", "language": "en"}])
        self.healthy = healthy
        self.calls: List[bytes] = []
        self.call_options: List[TranscriptionOptions] = []
        self.sessions: List[FakeSession] = []

    def create_session(self) -> FakeSession:
        session = FakeSession(len(self.sessions) + 1)
        self.sessions.append(session)
        return session

    async def transcribe(self, session, audio_data: bytes, options: TranscriptionOptions) -> Dict[str, Any]:
        self.calls.append(audio_data)
        self.call_options.append(options)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(audio_data)
        return response

    async def ping(self, session) -> bool:
        return self.healthy


class FakeLanguageModelClient:
    """Chat-completion client returning scripted JSON strings or raising."""

    def __init__(self, responses: Optional[List[Union[str, Dict[str, Any], Exception]]] = None):
        self.responses = list(responses or [command_response()])
        self.calls: List[Dict[str, Any]] = []

    async def complete_json(self, system_prompt: str, user_prompt: str,
                            temperature: float = 0.1, max_tokens: int = 2000) -> str:
        self.calls.append({
            "system_prompt": system_prompt,
            "user_prompt": user_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response


def command_response(intent: str = "Create task", confidence: float = 0.9,
                     actions: Optional[List[Dict[str, Any]]] = None,
                     entities: Optional[Dict[str, Any]] = None,
                     context_references: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Model output in the shape the parser expects."""
    return {
        "intent": intent,
        "confidence": confidence,
        "actions": actions if actions is not None else [
            {"type": "CREATE_TASK", "parameters": {"title": "Launch Plan", "priority": "high"}},
        ],
        "entities": entities if entities is not None else {},
        "context_references": context_references,
    }


WORKSPACE = {
    "users": [
        {"id": "user-1", "name": "Alice Chen", "email": "alice@example.com", "role": "CEO",
         "organization_id": "org-1", "status": "online"},
        {"id": "user-2", "name": "John Smith", "email": "john@example.com", "role": "marketing manager",
         "organization_id": "org-1", "status": "online"},
        {"id": "user-3", "name": "Priya Patel", "email": "priya@example.com", "role": "developer",
         "organization_id": "org-1", "status": "busy"},
    ],
    "channels": [
        {"id": "channel-1", "name": "Marketing Q1", "type": "project", "members": ["user-1", "user-2"]},
        {"id": "channel-2", "name": "Engineering", "type": "team", "members": ["user-1", "user-3"]},
        {"id": "channel-9", "name": "Sales Pipeline", "type": "project", "members": ["user-2"]},
    ],
    "tasks": [
        {"id": "task-1", "title": "Campaign Launch", "status": "in_progress", "created_by": "user-1",
         "assigned_to": ["user-2"], "due_date": "2024-01-18T09:00:00+00:00"},
        {"id": "task-2", "title": "Website Redesign", "status": "pending", "created_by": "user-1",
         "assigned_to": []},
        {"id": "task-3", "title": "Old Report", "status": "completed", "created_by": "user-1",
         "assigned_to": []},
    ],
}


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=1.0, sample_rate=16000):
        """Generate audio data for testing.

        Args:
            pattern: Type of audio pattern ('sine', 'noise', 'silence')
            duration_seconds: Duration of audio
            sample_rate: Sample rate in Hz

        Returns:
            bytes: Audio data as bytes
        """
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t)
        elif pattern == "noise":
            wave_data = np.random.uniform(-1, 1, samples)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        audio_data = (wave_data * 32767).astype(np.int16)
        return audio_data.tobytes()

    return generate_audio


@pytest.fixture
def sample_audio(audio_test_data):
    """One second of 16kHz mono sine wave, raw PCM."""
    return audio_test_data("sine", 1.0)


@pytest.fixture
def wav_audio(sample_audio):
    """The sample audio wrapped in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(16000)
        wf.writeframes(sample_audio)
    return buffer.getvalue()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def fake_backend():
    return FakeTranscriptionBackend()


@pytest.fixture
def pool_factory(fake_backend):
    """Build pools over the fake backend; health sweeps off by default."""
    def make(pool_size: int = 2, acquire_timeout: float = 0.5, **kwargs) -> ConnectionPool:
        kwargs.setdefault("health_check_interval", 0)
        return ConnectionPool(
            fake_backend.create_session,
            health_check=fake_backend.ping,
            pool_size=pool_size,
            acquire_timeout=acquire_timeout,
            **kwargs,
        )
    return make


@pytest.fixture
def transcription_cache(kv_store):
    return TranscriptionCache(kv_store)


@pytest.fixture
def workspace_executor():
    return WorkspaceQueryExecutor(
        users=[dict(u) for u in WORKSPACE["users"]],
        channels=[dict(c) for c in WORKSPACE["channels"]],
        tasks=[dict(t) for t in WORKSPACE["tasks"]],
    )


@pytest.fixture
def user_context():
    return UserContext(user_id="user-1", organization_id="org-1")


@pytest.fixture
def temporal_context():
    return TemporalContext(current_time=FIXED_NOW)


@pytest.fixture
def context_data(temporal_context):
    """Hand-built snapshot matching the workspace rows."""
    return ContextData(
        user=UserInfo(id="user-1", name="Alice Chen", email="alice@example.com", role="CEO"),
        organization=OrganizationInfo(id="org-1", name="Acme Corp"),
        active_channels=[
            ChannelSummary(id="channel-1", name="Marketing Q1", type="project", member_count=2),
            ChannelSummary(id="channel-2", name="Engineering", type="team", member_count=2),
        ],
        recent_tasks=[
            TaskSummary(id="task-2", title="Website Redesign", status="pending"),
            TaskSummary(id="task-1", title="Campaign Launch", status="in_progress",
                        assigned_to=["user-2"], due_date=datetime(2024, 1, 18, 9, 0, tzinfo=timezone.utc)),
        ],
        team_members=[
            TeamMember(id="user-1", name="Alice Chen", role="CEO", status="online"),
            TeamMember(id="user-2", name="John Smith", role="marketing manager", status="online"),
            TeamMember(id="user-3", name="Priya Patel", role="developer", status="busy"),
        ],
        temporal=temporal_context,
    )


@pytest.fixture
def context_aggregator(workspace_executor, kv_store):
    return ContextAggregator(workspace_executor, kv_store,
                             temporal_resolver=TemporalResolver(),
                             entity_resolver=EntityResolver(workspace_executor))


@pytest.fixture
def make_llm_client() -> Callable[..., FakeLanguageModelClient]:
    return FakeLanguageModelClient
