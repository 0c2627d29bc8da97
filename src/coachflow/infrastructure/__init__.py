"""
coachflow.infrastructure - Persistence
========================================

    - state_store: StateStorageAdapter with in-memory and JSON-file backends
"""

from coachflow.infrastructure.state_store import (
    FileStateStorage,
    InMemoryStateStorage,
    StateStorageAdapter,
    create_state_storage,
)

__all__ = [
    "StateStorageAdapter",
    "InMemoryStateStorage",
    "FileStateStorage",
    "create_state_storage",
]
