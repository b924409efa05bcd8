"""Organizational context snapshot models."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class UserContext:
    """Identifies who issued a command."""
    user_id: str
    organization_id: str
    session_id: Optional[str] = None
    timezone: str = "UTC"
    language: Optional[str] = None


@dataclass
class UserInfo:
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None


@dataclass
class OrganizationInfo:
    id: str
    name: str
    timezone: str = "UTC"


@dataclass
class ChannelSummary:
    id: str
    name: str
    type: Optional[str] = None
    member_count: int = 0


@dataclass
class TaskSummary:
    id: str
    title: str
    status: str
    assigned_to: List[str] = field(default_factory=list)
    due_date: Optional[datetime] = None


@dataclass
class TeamMember:
    id: str
    name: str
    role: Optional[str] = None
    status: str = "offline"  # "online" | "busy" | "offline"


@dataclass
class TemporalContext:
    """Reference point for resolving relative date expressions."""
    current_time: datetime
    timezone: str = "UTC"
    business_hours: Tuple[str, str] = ("09:00", "17:00")
    working_days: Tuple[int, ...] = (1, 2, 3, 4, 5)  # ISO weekdays, Monday=1


@dataclass
class ContextData:
    """Point-in-time view of the user's organization."""
    user: UserInfo
    organization: OrganizationInfo
    active_channels: List[ChannelSummary]
    recent_tasks: List[TaskSummary]
    team_members: List[TeamMember]
    temporal: TemporalContext
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly form used for the snapshot cache."""
        data = asdict(self)
        for task in data["recent_tasks"]:
            if task["due_date"] is not None:
                task["due_date"] = task["due_date"].isoformat()
        data["temporal"]["current_time"] = self.temporal.current_time.isoformat()
        data["temporal"]["business_hours"] = list(self.temporal.business_hours)
        data["temporal"]["working_days"] = list(self.temporal.working_days)
        data["built_at"] = self.built_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextData":
        temporal = data["temporal"]
        return cls(
            user=UserInfo(**data["user"]),
            organization=OrganizationInfo(**data["organization"]),
            active_channels=[ChannelSummary(**c) for c in data.get("active_channels", [])],
            recent_tasks=[
                TaskSummary(
                    id=t["id"],
                    title=t["title"],
                    status=t["status"],
                    assigned_to=list(t.get("assigned_to") or []),
                    due_date=_parse_datetime(t.get("due_date")),
                )
                for t in data.get("recent_tasks", [])
            ],
            team_members=[TeamMember(**m) for m in data.get("team_members", [])],
            temporal=TemporalContext(
                current_time=_parse_datetime(temporal["current_time"]),
                timezone=temporal.get("timezone", "UTC"),
                business_hours=tuple(temporal.get("business_hours", ("09:00", "17:00"))),
                working_days=tuple(temporal.get("working_days", (1, 2, 3, 4, 5))),
            ),
            built_at=_parse_datetime(data["built_at"]),
        )
