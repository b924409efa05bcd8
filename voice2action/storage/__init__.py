"""Collaborator interfaces for external stores and executors."""

from .kv_store import KeyValueStore, InMemoryKeyValueStore
from .query import QueryExecutor, CommandExecutor

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "QueryExecutor",
    "CommandExecutor",
]
