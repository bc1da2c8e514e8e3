"""
State Store adapters.
"""

from .base import StateStore, StoredExecution
from .memory import InMemoryStateStore
from .file import JsonFileStateStore

__all__ = [
    "StateStore",
    "StoredExecution",
    "InMemoryStateStore",
    "JsonFileStateStore",
]
