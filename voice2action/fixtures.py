"""File-backed stand-in for the organization database.

Lets the CLI parse commands without a live database: users, channels and
tasks are read from a YAML workspace file and served for the queries the
context layer issues.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import yaml

from .context.aggregator import (
    ACTIVE_CHANNELS_SQL,
    CONVERSATION_HISTORY_SQL,
    RECENT_TASKS_SQL,
    TEAM_MEMBERS_SQL,
    USER_SQL,
)
from .context.entity_resolver import CHANNEL_SEARCH_SQL

logger = logging.getLogger(__name__)

ACTIVE_TASK_STATUSES = ("pending", "in_progress", "review")


class WorkspaceQueryExecutor:
    """Answers the context queries from in-memory rows."""

    def __init__(self, users: List[Dict[str, Any]], channels: List[Dict[str, Any]],
                 tasks: List[Dict[str, Any]], voice_commands: List[Dict[str, Any]] = None):
        self.users = users
        self.channels = channels
        self.tasks = tasks
        self.voice_commands = voice_commands or []
        self.queries: List[str] = []

    @classmethod
    def from_yaml(cls, path: str) -> "WorkspaceQueryExecutor":
        """Load a workspace file with ``users``, ``channels`` and ``tasks`` lists."""
        workspace_file = Path(path)
        if not workspace_file.exists():
            raise FileNotFoundError(f"Workspace file not found: {workspace_file}")
        with open(workspace_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        logger.info(f"Loaded workspace from {workspace_file}: {len(data.get('users') or [])} users, "
                    f"{len(data.get('channels') or [])} channels, {len(data.get('tasks') or [])} tasks")
        return cls(
            users=list(data.get("users") or []),
            channels=list(data.get("channels") or []),
            tasks=list(data.get("tasks") or []),
            voice_commands=list(data.get("voice_commands") or []),
        )

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Mapping[str, Any]]:
        self.queries.append(sql)
        if sql == USER_SQL:
            return [u for u in self.users if str(u.get("id")) == str(params[0])][:1]
        if sql == ACTIVE_CHANNELS_SQL:
            return [self._channel_row(c) for c in self.channels
                    if str(params[0]) in [str(m) for m in c.get("members") or []]][:params[1]]
        if sql == RECENT_TASKS_SQL:
            user_id = str(params[0])
            return [t for t in self.tasks
                    if t.get("status") in ACTIVE_TASK_STATUSES
                    and (str(t.get("created_by")) == user_id
                         or user_id in [str(a) for a in t.get("assigned_to") or []])][:params[1]]
        if sql == TEAM_MEMBERS_SQL:
            return [{"id": u["id"], "name": u["name"], "role": u.get("role"),
                     "status": u.get("status", "offline")}
                    for u in self.users
                    if params[0] is None or str(u.get("organization_id", params[0])) == str(params[0])
                    ][:params[1]]
        if sql == CHANNEL_SEARCH_SQL:
            needle = str(params[0]).strip("%").lower()
            return [self._channel_row(c) for c in self.channels if needle in c["name"].lower()][:5]
        if sql == CONVERSATION_HISTORY_SQL:
            return [v for v in self.voice_commands if str(v.get("user_id")) == str(params[0])][:params[1]]
        raise ValueError(f"Unsupported query: {sql.strip()[:60]}")

    @staticmethod
    def _channel_row(channel: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "id": channel["id"],
            "name": channel["name"],
            "type": channel.get("type"),
            "member_count": len(channel.get("members") or []),
        }
