"""Prompt construction for command parsing."""

import time
from typing import Callable, Dict, Optional, Tuple

from ..models.context import ContextData

ACTION_CATALOG = """AVAILABLE ACTIONS:
1. CREATE_CHANNEL - Create new communication channels
   Parameters: name (required), description, category_id, channel_type, privacy_level

2. CREATE_TASK - Create tasks with assignments and deadlines
   Parameters: title (required), description, channel_id, assigned_to[], priority, due_date

3. ASSIGN_USERS - Assign users to tasks or channels
   Parameters: entity_type, entity_id, user_ids[], role

4. SEND_MESSAGE - Send messages to channels or users
   Parameters: target_type, target_id, content, message_type

5. UPLOAD_FILE - Upload and share files
   Parameters: file_name, description, target_channels[], target_tasks[]

6. SET_DEADLINE - Set or update task deadlines
   Parameters: task_id, due_date, priority

7. CREATE_DEPENDENCY - Create task dependencies
   Parameters: task_id, depends_on_task_id, dependency_type

8. UPDATE_STATUS - Update task or channel status
   Parameters: entity_type, entity_id, status, notes

9. SCHEDULE_MEETING - Schedule meetings and events
   Parameters: title, date_time, duration, attendees[], location

10. GENERATE_REPORT - Generate reports and summaries
    Parameters: report_type, filters, output_format"""

RESOLUTION_RULES = """ENTITY RESOLUTION RULES:
- Use context to resolve ambiguous references
- "marketing team" -> users with marketing role or marketing channel members
- "this project" -> most recently mentioned channel or task
- "next Friday" -> calculate actual date based on current time
- User names: match against team members, use fuzzy matching if needed
- Only list existing tasks under entities.tasks; a task being created is not an entity"""

OUTPUT_FORMAT = """OUTPUT FORMAT (JSON):
{
  "intent": "Primary intention of the command",
  "confidence": 0.95,
  "actions": [
    {
      "type": "ACTION_TYPE",
      "parameters": {"param1": "value1"},
      "priority": 1,
      "dependencies": [],
      "estimated_duration": "2 seconds"
    }
  ],
  "entities": {
    "users": [{"name": "John Smith", "resolved_id": "user-123", "confidence": 0.95}],
    "channels": [{"name": "Marketing Q1", "resolved_id": "channel-456", "confidence": 1.0}],
    "tasks": [{"title": "Campaign Launch", "resolved_id": "task-789", "confidence": 0.9}],
    "dates": [{"text": "next Friday", "resolved_date": "2024-01-19T17:00:00Z", "confidence": 0.9}]
  },
  "context_references": {
    "pronouns": ["this", "that"],
    "temporal_context": ["next week", "by Friday"],
    "implicit_entities": ["the team", "the project"]
  }
}"""

IMPORTANT_RULES = """IMPORTANT RULES:
1. Always resolve entity references using provided context
2. Be conservative with confidence scores - use lower scores for ambiguous references
3. Create logical action sequences for complex commands
4. Validate that all required parameters are present or can be inferred
5. Use dependency relationships to ensure proper execution order"""


def build_system_prompt(context: ContextData) -> str:
    """System prompt embedding the live context and the action contract."""
    channels = ", ".join(f'"{c.name}"' for c in context.active_channels)
    tasks = ", ".join(f'"{t.title}"' for t in context.recent_tasks[:5])
    members = ", ".join(f"{m.name} ({m.role or 'member'})" for m in context.team_members)

    return "\n\n".join([
        f'You are an advanced AI assistant for "{context.organization.name}", a team communication platform.',
        "CURRENT CONTEXT:\n"
        f"- User: {context.user.name} ({context.user.role or 'member'})\n"
        f"- Active Channels: {channels}\n"
        f"- Recent Tasks: {tasks}\n"
        f"- Team Members: {members}\n"
        f"- Current Time: {context.temporal.current_time.isoformat()}",
        ACTION_CATALOG,
        RESOLUTION_RULES,
        OUTPUT_FORMAT,
        IMPORTANT_RULES,
    ])


def build_user_prompt(transcript: str) -> str:
    return (
        f'Please parse this voice command: "{transcript}"\n\n'
        "Consider the current context and resolve all entity references. If any information "
        "is ambiguous, use the most likely interpretation based on the context and indicate "
        "lower confidence scores.\n\n"
        "Respond with a valid JSON object following the specified format."
    )


class PromptCache:
    """System prompts cached per (user, organization) for a short time."""

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[str, float]] = {}

    def get(self, user_id: str, organization_id: str) -> Optional[str]:
        entry = self._entries.get((user_id, organization_id))
        if entry is None:
            return None
        prompt, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            return None
        return prompt

    def put(self, user_id: str, organization_id: str, prompt: str) -> None:
        self._entries[(user_id, organization_id)] = (prompt, self._clock())
        self.prune()

    def prune(self) -> None:
        now = self._clock()
        expired = [key for key, (_, stored_at) in self._entries.items() if now - stored_at > self.ttl]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
