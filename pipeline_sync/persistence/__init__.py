"""Client-state persistence on SQLite.

Public API:
    # Database lifecycle
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None

    # Storage
    - StateRepository: JSON documents by key
    - PersistenceAdapter: save/load/apply the pipeline snapshot

    # Exceptions
    - PersistenceError and subclasses

Example usage:
    >>> from pipeline_sync.persistence import init_database, PersistenceAdapter
    >>> init_database("sqlite:///./data/pipeline_state.db")
    >>> adapter = PersistenceAdapter()
    >>> snapshot = adapter.load()
"""

from .adapter import PERSISTED_DISCOVERY_LIMIT, STATE_KEY, PersistedState, PersistenceAdapter
from .database import close_database, get_engine, get_session, init_database, is_initialized
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
)
from .repositories import StateRepository

__all__ = [
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "is_initialized",
    "StateRepository",
    "PersistenceAdapter",
    "PersistedState",
    "STATE_KEY",
    "PERSISTED_DISCOVERY_LIMIT",
    "PersistenceError",
    "DatabaseConnectionError",
    "DataIntegrityError",
]
