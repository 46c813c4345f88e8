"""
pipewright.orchestration.run_store - Run Archive
==================================================

The Run Store keeps every RunState snapshot the engine produces, so a Run can
be inspected while it executes and after it finished.

    ┌──────────────┐   save_run(state)   ┌──────────────────┐
    │  Pipeline    │ ──────────────────→ │                  │
    │  Engine      │                     │    Run Store     │
    └──────────────┘                     │                  │
    ┌──────────────┐   get / list        │  run_id → state  │
    │  CLI / User  │ ←────────────────── │                  │
    └──────────────┘                     └──────────────────┘

Retention:
    A finished Run carries ``expires_at``. ``purge_expired()`` drops every
    finished Run past that time. Running Runs are never purged.

Implementations:
    - RunStore (ABC):      Abstract interface
    - InMemoryRunStore:    Dict-based, for the CLI and tests
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from pipewright.core.exceptions import StateError
from pipewright.core.state import RunState

logger = logging.getLogger(__name__)


class RunStore(ABC):
    """Abstract base class for Run persistence.

    Example:
        >>> async def archive(store: RunStore, state: RunState):
        ...     await store.save_run(state)
        ...     assert await store.get_run(state.run_id) == state
    """

    # -------------------------------------------------------------------------
    # Connection Lifecycle
    # -------------------------------------------------------------------------
    @abstractmethod
    async def connect(self) -> None:
        """Open the storage backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the storage backend."""

    # -------------------------------------------------------------------------
    # Run Operations
    # -------------------------------------------------------------------------
    @abstractmethod
    async def save_run(self, state: RunState) -> None:
        """Save or replace the snapshot of a Run.

        Raises:
            StateError: If the store is not connected.
        """

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[RunState]:
        """Latest snapshot of a Run, None if unknown."""

    @abstractmethod
    async def list_runs(self, pipeline_name: Optional[str] = None) -> list[RunState]:
        """Stored Runs, oldest first, optionally for one pipeline only."""

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop finished Runs whose retention has elapsed.

        Returns:
            Number of Runs removed.
        """


class InMemoryRunStore(RunStore):
    """In-memory Run archive.

    Data is lost when the process ends.

    Example:
        >>> store = InMemoryRunStore()
        >>> await store.connect()
        >>> await store.save_run(state)
        >>> await store.list_runs("frontend")
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunState] = {}
        self._connected: bool = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True
        logger.info("InMemoryRunStore connected")

    async def disconnect(self) -> None:
        """Clear all stored Runs and mark as disconnected."""
        self._runs.clear()
        self._connected = False
        logger.info("InMemoryRunStore disconnected")

    async def save_run(self, state: RunState) -> None:
        if not self._connected:
            raise StateError(
                message="Run store is not connected",
                error_code="NOT_CONNECTED",
                details={"run_id": state.run_id},
            )
        self._runs[state.run_id] = state
        logger.debug(
            "Saved run: %s (stage=%s, status=%s)",
            state.run_id,
            state.current_stage,
            state.status.value,
        )

    async def get_run(self, run_id: str) -> Optional[RunState]:
        return self._runs.get(run_id)

    async def list_runs(self, pipeline_name: Optional[str] = None) -> list[RunState]:
        runs = [
            run for run in self._runs.values()
            if pipeline_name is None or run.pipeline_name == pipeline_name
        ]
        return sorted(runs, key=lambda run: run.created_at)

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        expired = [
            run_id for run_id, run in self._runs.items()
            if run.is_terminal and run.expires_at is not None and run.expires_at <= now
        ]
        for run_id in expired:
            del self._runs[run_id]
        if expired:
            logger.info("Purged %d expired runs", len(expired))
        return len(expired)
