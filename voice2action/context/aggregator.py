"""Builds the organizational context snapshot used to parse a command."""

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ContextBuildError
from ..metrics import PerformanceTracker
from ..models.context import (
    ChannelSummary,
    ContextData,
    OrganizationInfo,
    TaskSummary,
    TeamMember,
    UserContext,
    UserInfo,
)
from ..storage.kv_store import KeyValueStore
from ..storage.query import QueryExecutor
from .entity_resolver import EntityResolver
from .temporal import TemporalResolver

logger = logging.getLogger(__name__)

SLOW_BUILD_SECONDS = 0.5

USER_SQL = "SELECT id, name, email, role FROM users WHERE id = $1"

ACTIVE_CHANNELS_SQL = """
    SELECT DISTINCT c.id, c.name, c.channel_type AS type,
           COUNT(cm.user_id) AS member_count
    FROM channels c
    LEFT JOIN channel_members cm ON c.id = cm.channel_id
    WHERE c.status = 'active'
      AND c.id IN (SELECT channel_id FROM channel_members WHERE user_id = $1)
    GROUP BY c.id, c.name, c.channel_type
    ORDER BY c.created_at DESC
    LIMIT $2
"""

RECENT_TASKS_SQL = """
    SELECT id, title, status, assigned_to, due_date
    FROM tasks
    WHERE (created_by = $1 OR $1 = ANY(assigned_to))
      AND status IN ('pending', 'in_progress', 'review')
    ORDER BY CASE WHEN due_date IS NOT NULL THEN due_date ELSE created_at END DESC
    LIMIT $2
"""

TEAM_MEMBERS_SQL = """
    SELECT id, name, role,
           CASE
             WHEN last_active > NOW() - INTERVAL '5 minutes' THEN 'online'
             WHEN last_active > NOW() - INTERVAL '30 minutes' THEN 'busy'
             ELSE 'offline'
           END AS status
    FROM users
    WHERE organization_id = $1 OR $1 IS NULL
    ORDER BY
      CASE
        WHEN last_active > NOW() - INTERVAL '5 minutes' THEN 1
        WHEN last_active > NOW() - INTERVAL '30 minutes' THEN 2
        ELSE 3
      END,
      name
    LIMIT $2
"""

CONVERSATION_HISTORY_SQL = """
    SELECT id, transcript, processed_transcript, intent_analysis, execution_status, created_at
    FROM voice_commands
    WHERE user_id = $1
    ORDER BY created_at DESC
    LIMIT $2
"""


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class ContextAggregator:
    """Assembles ``ContextData`` from the database, with a TTL snapshot cache."""

    def __init__(
        self,
        query_executor: QueryExecutor,
        store: KeyValueStore,
        temporal_resolver: Optional[TemporalResolver] = None,
        entity_resolver: Optional[EntityResolver] = None,
        cache_enabled: bool = True,
        cache_ttl: int = 300,
        max_recent_tasks: int = 20,
        max_recent_channels: int = 15,
        max_team_members: int = 50,
        organization_name: str = "CEO Communication Platform",
    ):
        """Initialize context aggregator.

        Args:
            query_executor: Database access
            store: Key/value store for cached snapshots
            temporal_resolver: Source of the temporal snapshot
            entity_resolver: Resolver shared with the command parser
            cache_enabled: Whether snapshots are cached at all
            cache_ttl: Seconds a cached snapshot stays valid
            max_recent_tasks: Cap on tasks in a snapshot
            max_recent_channels: Cap on channels in a snapshot
            max_team_members: Cap on team members in a snapshot
            organization_name: Display name reported for every organization
        """
        self.db = query_executor
        self.store = store
        self.temporal_resolver = temporal_resolver or TemporalResolver()
        self.entity_resolver = entity_resolver or EntityResolver(query_executor)
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl
        self.max_recent_tasks = max_recent_tasks
        self.max_recent_channels = max_recent_channels
        self.max_team_members = max_team_members
        self.organization_name = organization_name
        self.performance = PerformanceTracker()

        logger.info(f"ContextAggregator initialized (cache={'on' if cache_enabled else 'off'}, ttl={cache_ttl}s)")

    @staticmethod
    def cache_key(user_context: UserContext) -> str:
        return f"ctx:{user_context.organization_id}:{user_context.user_id}:{user_context.session_id or 'default'}"

    async def build_context(self, user_context: UserContext) -> ContextData:
        """Return a snapshot no older than the cache TTL.

        Raises:
            ContextBuildError: If the user does not exist or a fetch fails
        """
        started = time.perf_counter()
        key = self.cache_key(user_context)

        try:
            if self.cache_enabled:
                cached = await self._get_cached(key)
                if cached is not None:
                    self.performance.record("build_time", time.perf_counter() - started)
                    logger.debug(f"Context cache hit: {key}")
                    return cached

            user, organization, channels, tasks, members = await asyncio.gather(
                self._get_user_info(user_context.user_id),
                self._get_organization_info(user_context.organization_id),
                self._get_active_channels(user_context.user_id),
                self._get_recent_tasks(user_context.user_id),
                self._get_team_members(user_context.organization_id),
            )
            context = ContextData(
                user=user,
                organization=organization,
                active_channels=channels,
                recent_tasks=tasks,
                team_members=members,
                temporal=self.temporal_resolver.get_current_temporal_context(user_context.timezone),
            )

            if self.cache_enabled:
                await self._cache(key, context)

            elapsed = time.perf_counter() - started
            self.performance.record("build_time", elapsed)
            if elapsed > SLOW_BUILD_SECONDS:
                logger.warning(f"Slow context build for {user_context.user_id}: {elapsed * 1000:.0f}ms "
                               f"({len(channels)} channels, {len(tasks)} tasks)")
            logger.debug(f"Context built in {elapsed * 1000:.1f}ms: {len(channels)} channels, "
                         f"{len(tasks)} tasks, {len(members)} members")
            return context

        except ContextBuildError:
            self.performance.record("build_time", time.perf_counter() - started)
            raise
        except Exception as e:
            elapsed = time.perf_counter() - started
            self.performance.record("build_time", elapsed)
            logger.error(f"Context building failed for {user_context.user_id}: {e}")
            raise ContextBuildError("Failed to build context", {
                "user_id": user_context.user_id,
                "organization_id": user_context.organization_id,
                "processing_time": elapsed,
                "original_error": str(e),
            }) from e

    async def invalidate_user_context(self, user_id: str, organization_id: Optional[str] = None) -> int:
        """Drop cached snapshots for a user.

        With ``organization_id`` only the default-session key goes; without it
        every session in every organization is cleared.

        Returns:
            Number of keys deleted
        """
        try:
            if organization_id:
                keys = [self.cache_key(UserContext(user_id=user_id, organization_id=organization_id))]
            else:
                keys = await self.store.keys(f"ctx:*:{user_id}:*")
            deleted = await self.store.delete(*keys) if keys else 0
            logger.debug(f"Invalidated {deleted} context entries for {user_id}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to invalidate context for {user_id}: {e}")
            return 0

    async def get_conversation_history(self, user_id: str, limit: int = 10) -> Dict[str, List[Any]]:
        """Recent voice commands plus transcripts of the last five completed ones."""
        try:
            rows = await self.db.query(CONVERSATION_HISTORY_SQL, [user_id, limit])
        except Exception as e:
            logger.error(f"Failed to get conversation history for {user_id}: {e}")
            return {"recent_commands": [], "context": []}

        recent = [dict(row) for row in rows]
        hints = [
            row.get("processed_transcript") or row.get("transcript")
            for row in recent
            if row.get("execution_status") == "completed"
        ][:5]
        return {"recent_commands": recent, "context": hints}

    def get_performance_stats(self) -> Dict[str, float]:
        return self.performance.summary("build_time")

    async def _get_cached(self, key: str) -> Optional[ContextData]:
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            context = ContextData.from_dict(json.loads(raw))
        except Exception as e:
            logger.warning(f"Context cache lookup failed for {key}: {e}")
            return None

        built_at = context.built_at
        if built_at.tzinfo is None:
            built_at = built_at.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - built_at).total_seconds()
        if age > self.cache_ttl:
            logger.debug(f"Discarding stale context snapshot {key} ({age:.0f}s old)")
            return None
        return context

    async def _cache(self, key: str, context: ContextData) -> None:
        try:
            await self.store.set(key, json.dumps(context.to_dict()), self.cache_ttl)
        except Exception as e:
            logger.warning(f"Context cache write failed for {key}: {e}")

    async def _get_user_info(self, user_id: str) -> UserInfo:
        rows = await self.db.query(USER_SQL, [user_id])
        if not rows:
            raise ContextBuildError(f"User not found: {user_id}", {"user_id": user_id})
        row = rows[0]
        return UserInfo(id=str(row["id"]), name=row["name"], email=row.get("email"), role=row.get("role"))

    async def _get_organization_info(self, organization_id: str) -> OrganizationInfo:
        # No organizations table yet; every org shares the configured display name
        return OrganizationInfo(id=organization_id, name=self.organization_name, timezone="UTC")

    async def _get_active_channels(self, user_id: str) -> List[ChannelSummary]:
        rows = await self.db.query(ACTIVE_CHANNELS_SQL, [user_id, self.max_recent_channels])
        return [
            ChannelSummary(id=str(row["id"]), name=row["name"], type=row.get("type"),
                           member_count=int(row.get("member_count") or 0))
            for row in rows[:self.max_recent_channels]
        ]

    async def _get_recent_tasks(self, user_id: str) -> List[TaskSummary]:
        rows = await self.db.query(RECENT_TASKS_SQL, [user_id, self.max_recent_tasks])
        return [self._task_from_row(row) for row in rows[:self.max_recent_tasks]]

    @staticmethod
    def _task_from_row(row: Mapping[str, Any]) -> TaskSummary:
        return TaskSummary(
            id=str(row["id"]),
            title=row["title"],
            status=row["status"],
            assigned_to=[str(a) for a in (row.get("assigned_to") or [])],
            due_date=_to_datetime(row.get("due_date")),
        )

    async def _get_team_members(self, organization_id: str) -> List[TeamMember]:
        rows = await self.db.query(TEAM_MEMBERS_SQL, [organization_id, self.max_team_members])
        return [
            TeamMember(id=str(row["id"]), name=row["name"], role=row.get("role"),
                       status=row.get("status") or "offline")
            for row in rows[:self.max_team_members]
        ]
