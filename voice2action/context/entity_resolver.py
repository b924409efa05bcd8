"""Resolution of user, channel and task mentions to concrete ids."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar

from ..metrics import PerformanceTracker
from ..models.command import ResolvedDateEntity, ResolvedEntities, ResolvedEntity
from ..models.context import ContextData, TaskSummary
from ..storage.query import QueryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")

FUZZY_CANDIDATE_THRESHOLD = 0.5
FUZZY_ACCEPT_THRESHOLD = 0.7
SUBSTRING_BOOST = 0.3

ROLE_CONFIDENCE = 0.8
DATABASE_CHANNEL_CONFIDENCE = 0.6
CURRENT_TASK_CONFIDENCE = 0.8
URGENT_TASK_CONFIDENCE = 0.7

# Role a team member must have -> words in the mention that point at it
ROLE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "manager": ("manager", "lead", "supervisor"),
    "developer": ("developer", "engineer", "programmer"),
    "designer": ("designer", "creative"),
    "marketing": ("marketing", "marketer"),
    "sales": ("sales", "salesperson"),
}

CHANNEL_SEARCH_SQL = """
    SELECT c.id, c.name, c.channel_type AS type,
           COUNT(cm.user_id) AS member_count
    FROM channels c
    LEFT JOIN channel_members cm ON c.id = cm.channel_id
    WHERE c.name ILIKE $1
      AND c.status = 'active'
      AND (c.privacy_level = 'public'
           OR c.id IN (SELECT channel_id FROM channel_members WHERE user_id = $2))
    GROUP BY c.id, c.name, c.channel_type
    LIMIT 5
"""


@dataclass(frozen=True)
class ResolvedMatch:
    """A context record that a mention resolved to."""
    id: str
    name: str
    kind: str  # "user" | "channel" | "task"
    confidence: float


def calculate_similarity(first: str, second: str) -> float:
    """Token-set Jaccard similarity plus a substring boost, capped at 1.0."""
    if first == second:
        return 1.0
    words_first = set(first.split())
    words_second = set(second.split())
    union = words_first | words_second
    if not union:
        return 0.0
    jaccard = len(words_first & words_second) / len(union)
    boost = SUBSTRING_BOOST if (first in second or second in first) else 0.0
    return min(1.0, jaccard + boost)


def fuzzy_candidates(query: str, items: Iterable[T], label: Callable[[T], str]) -> List[Tuple[T, float]]:
    """Candidates scoring above 0.5, best first (ties keep list order)."""
    query = query.lower()
    scored = [(item, calculate_similarity(query, label(item).lower())) for item in items]
    matches = [(item, score) for item, score in scored if score > FUZZY_CANDIDATE_THRESHOLD]
    return sorted(matches, key=lambda match: match[1], reverse=True)


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class EntityResolver:
    """Staged exact -> fuzzy -> heuristic matching against a context snapshot.

    Each stage either returns a match or falls through to the next; when every
    stage fails the mention is unresolved and None is returned.
    """

    def __init__(self, query_executor: Optional[QueryExecutor] = None):
        """Initialize entity resolver.

        Args:
            query_executor: Database access for the channel search fallback.
                Without one, channel resolution stops after fuzzy matching.
        """
        self.query_executor = query_executor
        self.performance = PerformanceTracker()
        logger.debug("EntityResolver initialized")

    async def resolve_user(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        return await self._resolve("user", name, context, (
            self._exact_user,
            self._fuzzy_user,
            self._user_by_role,
        ))

    async def resolve_channel(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        return await self._resolve("channel", name, context, (
            self._exact_channel,
            self._fuzzy_channel,
            self._channel_from_database,
        ))

    async def resolve_task(self, reference: str, context: ContextData) -> Optional[ResolvedMatch]:
        return await self._resolve("task", reference, context, (
            self._exact_task,
            self._fuzzy_task,
            self._task_from_context,
        ))

    async def _resolve(self, kind: str, text: str, context: ContextData,
                       stages: Sequence[Callable]) -> Optional[ResolvedMatch]:
        started = time.perf_counter()
        try:
            if not text or not text.strip():
                return None
            for stage in stages:
                match = await stage(text, context)
                if match is not None:
                    return match
            logger.debug(f"{kind.capitalize()} resolution failed for '{text}'")
            return None
        except Exception as e:
            logger.error(f"{kind.capitalize()} resolution error for '{text}': {e}")
            return None
        finally:
            self.performance.record("resolution_time", time.perf_counter() - started)

    # Users

    async def _exact_user(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        wanted = name.lower()
        for member in context.team_members:
            if member.name.lower() == wanted:
                return ResolvedMatch(member.id, member.name, "user", 1.0)
        return None

    async def _fuzzy_user(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        matches = fuzzy_candidates(name, context.team_members, lambda m: m.name)
        if matches and matches[0][1] > FUZZY_ACCEPT_THRESHOLD:
            member, score = matches[0]
            return ResolvedMatch(member.id, member.name, "user", score)
        return None

    async def _user_by_role(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        lowered = name.lower()
        for role, keywords in ROLE_KEYWORDS.items():
            if not any(keyword in lowered for keyword in keywords):
                continue
            for member in context.team_members:
                if role in (member.role or "").lower():
                    return ResolvedMatch(member.id, member.name, "user", ROLE_CONFIDENCE)
        return None

    # Channels

    async def _exact_channel(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        wanted = name.lower()
        for channel in context.active_channels:
            if channel.name.lower() == wanted:
                return ResolvedMatch(channel.id, channel.name, "channel", 1.0)
        return None

    async def _fuzzy_channel(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        matches = fuzzy_candidates(name, context.active_channels, lambda c: c.name)
        if matches and matches[0][1] > FUZZY_ACCEPT_THRESHOLD:
            channel, score = matches[0]
            return ResolvedMatch(channel.id, channel.name, "channel", score)
        return None

    async def _channel_from_database(self, name: str, context: ContextData) -> Optional[ResolvedMatch]:
        """Search every channel the user can see, not just the loaded ones."""
        if self.query_executor is None:
            return None
        try:
            rows = await self.query_executor.query(CHANNEL_SEARCH_SQL, [f"%{name}%", context.user.id])
        except Exception as e:
            logger.error(f"Database channel search failed for '{name}': {e}")
            return None
        if not rows:
            return None
        row: Mapping[str, Any] = rows[0]
        return ResolvedMatch(str(row["id"]), row["name"], "channel", DATABASE_CHANNEL_CONFIDENCE)

    # Tasks

    async def _exact_task(self, reference: str, context: ContextData) -> Optional[ResolvedMatch]:
        wanted = reference.lower()
        for task in context.recent_tasks:
            if task.title.lower() == wanted:
                return ResolvedMatch(task.id, task.title, "task", 1.0)
        return None

    async def _fuzzy_task(self, reference: str, context: ContextData) -> Optional[ResolvedMatch]:
        matches = fuzzy_candidates(reference, context.recent_tasks, lambda t: t.title)
        if matches and matches[0][1] > FUZZY_ACCEPT_THRESHOLD:
            task, score = matches[0]
            return ResolvedMatch(task.id, task.title, "task", score)
        return None

    async def _task_from_context(self, reference: str, context: ContextData) -> Optional[ResolvedMatch]:
        lowered = reference.lower()
        if ("this task" in lowered or "current task" in lowered) and context.recent_tasks:
            task = context.recent_tasks[0]
            return ResolvedMatch(task.id, task.title, "task", CURRENT_TASK_CONFIDENCE)

        if "urgent" in lowered or "priority" in lowered:
            task = self._first_due_soon(context.recent_tasks, _as_aware(context.temporal.current_time))
            if task is not None:
                return ResolvedMatch(task.id, task.title, "task", URGENT_TASK_CONFIDENCE)
        return None

    @staticmethod
    def _first_due_soon(tasks: Iterable[TaskSummary], now: datetime) -> Optional[TaskSummary]:
        horizon = now + timedelta(hours=24)
        for task in tasks:
            if task.due_date is not None and _as_aware(task.due_date) <= horizon:
                return task
        return None

    # Parser output

    async def validate_and_enhance_entities(self, entities: Optional[Mapping[str, Any]],
                                            context: ContextData) -> ResolvedEntities:
        """Re-resolve the entities a parser extracted.

        Each kept entity's confidence is the minimum of the extraction and the
        resolution confidence. Unresolvable users, channels and tasks are
        dropped. Dates and files pass through unchanged.
        """
        entities = entities or {}

        users = []
        for text, extraction in self._mentions(entities.get("users"), "name"):
            match = await self.resolve_user(text, context)
            if match is not None:
                users.append(ResolvedEntity(text, match.id, min(extraction, match.confidence)))

        channels = []
        for text, extraction in self._mentions(entities.get("channels"), "name"):
            match = await self.resolve_channel(text, context)
            if match is not None:
                channels.append(ResolvedEntity(text, match.id, min(extraction, match.confidence)))

        tasks = []
        for text, extraction in self._mentions(entities.get("tasks"), "title"):
            match = await self.resolve_task(text, context)
            if match is not None:
                tasks.append(ResolvedEntity(text, match.id, min(extraction, match.confidence)))

        dates = []
        for item in entities.get("dates") or []:
            if isinstance(item, Mapping) and item.get("text"):
                dates.append(ResolvedDateEntity(
                    text=str(item["text"]),
                    resolved_date=self._parse_date(item.get("resolved_date")),
                    confidence=self._extraction_confidence(item),
                ))

        files = []
        for item in entities.get("files") or []:
            if isinstance(item, Mapping):
                text = item.get("name") or item.get("file_name") or ""
                files.append(ResolvedEntity(str(text), item.get("resolved_id"),
                                            self._extraction_confidence(item)))

        return ResolvedEntities(
            users=tuple(users),
            channels=tuple(channels),
            tasks=tuple(tasks),
            dates=tuple(dates),
            files=tuple(files),
        )

    def _mentions(self, items: Any, text_key: str) -> List[Tuple[str, float]]:
        mentions = []
        for item in items or []:
            if isinstance(item, str):
                mentions.append((item, 1.0))
            elif isinstance(item, Mapping) and item.get(text_key):
                mentions.append((str(item[text_key]), self._extraction_confidence(item)))
        return mentions

    @staticmethod
    def _extraction_confidence(item: Mapping[str, Any]) -> float:
        value = item.get("confidence")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 1.0
        return max(0.0, min(1.0, float(value)))

    @staticmethod
    def _parse_date(value: Any) -> Optional[datetime]:
        if not isinstance(value, str) or not value:
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Ignoring unparseable resolved date: {value}")
            return None

    def get_performance_stats(self) -> Dict[str, float]:
        return self.performance.summary("resolution_time")
