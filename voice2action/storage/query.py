"""Database and executor collaborator interfaces."""

from typing import Any, List, Mapping, Protocol, Sequence

from ..models.command import ParsedCommand
from ..models.context import UserContext
from ..models.metrics import ExecutionResult


class QueryExecutor(Protocol):
    """Runs parameterized SQL and returns plain row mappings."""

    async def query(self, sql: str, params: Sequence[Any] = ()) -> List[Mapping[str, Any]]:
        ...


class CommandExecutor(Protocol):
    """Downstream component that carries out a finished command."""

    async def execute(self, command: ParsedCommand, user_context: UserContext) -> ExecutionResult:
        ...
