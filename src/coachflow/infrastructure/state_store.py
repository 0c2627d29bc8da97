"""
coachflow.infrastructure.state_store - Conversation State Storage
===================================================================

Storage adapters own the authoritative copy of every ConversationState.
The ConversationStateManager keeps only a read cache and always writes
through one of these adapters.

    ┌──────────────────────┐   load/save/delete   ┌──────────────────────┐
    │ ConversationState    │ ───────────────────→ │ StateStorageAdapter  │
    │ Manager (cache)      │ ←─────────────────── │  (authoritative)     │
    └──────────────────────┘   ConversationState  └──────────────────────┘
                                                     ├── InMemoryStateStorage
                                                     └── FileStateStorage

Key Schema:
    One document per session, keyed by session_id.
        memory:  dict[session_id] → ConversationState (deep copies)
        file:    {directory}/{session_id}.json

Every adapter returns copies: mutating a loaded state never changes what
is stored until ``save_state`` is called.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from coachflow.core.config import StateStoreConfig
from coachflow.core.exceptions import ConfigurationError, StateStorageError
from coachflow.core.state import ConversationState

logger = logging.getLogger(__name__)


# =============================================================================
# Abstract Base Class: StateStorageAdapter
# =============================================================================
class StateStorageAdapter(ABC):
    """Contract for conversation-state persistence.

    Only ``load_state``, ``save_state`` and ``delete_state`` are used on the
    hot path. The listing and purge helpers support maintenance jobs.
    """

    async def connect(self) -> None:
        """Open connections or create directories. No-op by default."""

    async def disconnect(self) -> None:
        """Release resources. No-op by default."""

    @abstractmethod
    async def load_state(self, session_id: str) -> Optional[ConversationState]:
        """Return a copy of the stored state, or None if absent.

        Raises:
            StateStorageError: If the backend fails or the document is corrupt.
        """

    @abstractmethod
    async def save_state(self, state: ConversationState) -> None:
        """Store ``state`` under its session_id (last write wins)."""

    @abstractmethod
    async def delete_state(self, session_id: str) -> bool:
        """Delete a session's state. Returns False if nothing was stored."""

    @abstractmethod
    async def list_session_ids(self) -> list[str]:
        """Session ids that currently have stored state."""

    async def list_user_states(self, user_id: str) -> list[ConversationState]:
        """All stored states owned by ``user_id``, most recently updated first."""
        states = []
        for session_id in await self.list_session_ids():
            state = await self.load_state(session_id)
            if state is not None and state.user_id == user_id:
                states.append(state)
        states.sort(key=lambda s: s.metadata.last_updated, reverse=True)
        return states

    async def purge_older_than(self, days: float) -> int:
        """Delete states not updated in the last ``days`` days.

        Returns:
            Number of states deleted.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        purged = 0
        for session_id in await self.list_session_ids():
            state = await self.load_state(session_id)
            if state is not None and state.metadata.last_updated < cutoff:
                if await self.delete_state(session_id):
                    purged += 1
        if purged:
            logger.info("Purged %d conversation states older than %s days", purged, days)
        return purged


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryStateStorage(StateStorageAdapter):
    """Dict-backed storage for development and tests.

    States are deep-copied on the way in and on the way out, so callers can
    never mutate the stored document by accident.

    Example:
        >>> storage = InMemoryStateStorage()
        >>> await storage.save_state(state)
        >>> (await storage.load_state(state.session_id)) is state
        False
    """

    def __init__(self) -> None:
        self._states: dict[str, ConversationState] = {}

    async def disconnect(self) -> None:
        self._states.clear()

    async def load_state(self, session_id: str) -> Optional[ConversationState]:
        state = self._states.get(session_id)
        return state.model_copy(deep=True) if state is not None else None

    async def save_state(self, state: ConversationState) -> None:
        self._states[state.session_id] = state.model_copy(deep=True)
        logger.debug(
            "Saved conversation state: %s (version=%d)", state.session_id, state.metadata.version
        )

    async def delete_state(self, session_id: str) -> bool:
        if session_id in self._states:
            del self._states[session_id]
            logger.debug("Deleted conversation state: %s", session_id)
            return True
        return False

    async def list_session_ids(self) -> list[str]:
        return list(self._states.keys())


# =============================================================================
# File Implementation
# =============================================================================
# One JSON document per session. Writes go to a temporary file that is then
# renamed over the target, so a crash never leaves a half-written document.
# Blocking file I/O runs in a worker thread via asyncio.to_thread.
# =============================================================================
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileStateStorage(StateStorageAdapter):
    """JSON-file storage, one file per session.

    Args:
        directory: Root directory; created on ``connect`` or first save.
    """

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)

    async def connect(self) -> None:
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        logger.info("FileStateStorage ready at %s", self.directory)

    def _path_for(self, session_id: str) -> Path:
        return self.directory / f"{_UNSAFE_CHARS.sub('_', session_id)}.json"

    async def load_state(self, session_id: str) -> Optional[ConversationState]:
        path = self._path_for(session_id)
        try:
            raw = await asyncio.to_thread(self._read, path)
        except OSError as exc:
            raise StateStorageError(
                message=f"Failed to read state file: {exc}",
                session_id=session_id,
                error_code="STATE_READ_FAILED",
                details={"path": str(path)},
            ) from exc
        if raw is None:
            return None
        try:
            return ConversationState.model_validate_json(raw)
        except ValidationError as exc:
            raise StateStorageError(
                message="Stored state is corrupt or from an incompatible schema",
                session_id=session_id,
                error_code="STATE_CORRUPT",
                details={"path": str(path), "errors": exc.error_count()},
            ) from exc

    async def save_state(self, state: ConversationState) -> None:
        path = self._path_for(state.session_id)
        payload = state.model_dump_json(indent=2)
        try:
            await asyncio.to_thread(self._write, path, payload)
        except OSError as exc:
            raise StateStorageError(
                message=f"Failed to write state file: {exc}",
                session_id=state.session_id,
                error_code="STATE_WRITE_FAILED",
                details={"path": str(path)},
            ) from exc
        logger.debug("Saved conversation state to %s (version=%d)", path, state.metadata.version)

    async def delete_state(self, session_id: str) -> bool:
        path = self._path_for(session_id)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StateStorageError(
                message=f"Failed to delete state file: {exc}",
                session_id=session_id,
                error_code="STATE_DELETE_FAILED",
                details={"path": str(path)},
            ) from exc
        return True

    async def list_session_ids(self) -> list[str]:
        if not self.directory.exists():
            return []
        paths = await asyncio.to_thread(lambda: sorted(self.directory.glob("*.json")))
        ids = []
        for path in paths:
            state = await self.load_state(path.stem)
            if state is not None:
                ids.append(state.session_id)
        return ids

    @staticmethod
    def _read(path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    @staticmethod
    def _write(path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)


# =============================================================================
# Factory
# =============================================================================
def create_state_storage(config: StateStoreConfig) -> StateStorageAdapter:
    """Build the adapter selected by ``config.backend``.

    Raises:
        ConfigurationError: For an unknown backend.
    """
    if config.backend == "memory":
        return InMemoryStateStorage()
    if config.backend == "file":
        return FileStateStorage(config.directory)
    raise ConfigurationError(
        message=f"Unknown state store backend: {config.backend}",
        error_code="UNKNOWN_STATE_BACKEND",
        details={"backend": config.backend},
    )
