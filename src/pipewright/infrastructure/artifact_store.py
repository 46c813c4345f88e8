"""
pipewright.infrastructure.artifact_store - Artifact Persistence Layer
======================================================================

Artifacts are the files a job publishes for later jobs of the same Run:
a compiled frontend bundle, test reports, a packaged image context. They
are addressed by ``(run_id, job_name, path)`` and live for a bounded
retention window.

Architecture Context:
    ┌───────────────┐                      ┌──────────────────┐
    │  JobRunner    │ ── put(run, job, ──→ │  ArtifactStore   │
    │  (producer)   │       path, bytes)   │                  │
    └───────────────┘                      │  (run, job, path)│
    ┌───────────────┐                      │     → Artifact   │
    │  Dependency   │ ←── get / list ───── │                  │
    │  Resolver     │                      └──────────────────┘
    └───────────────┘

Guarantees:
    - put-once: each key is written exactly once, a second put raises
      ArtifactExistsError. Concurrent jobs never share keys, so no further
      locking is needed.
    - read-only once published.
    - get() after the retention window raises ArtifactExpiredError, never
      stale bytes. Purging keeps an expiry marker so this holds after purge.

Storage Implementations:
    - InMemoryArtifactStore:   dict-based, for tests and single-process runs
    - FileSystemArtifactStore: files under a root directory plus a JSON
      index per job

Usage:
    >>> store = InMemoryArtifactStore(default_retention=timedelta(hours=24))
    >>> await store.put("run-1", "build", "frontend/index.html", b"<html>")
    >>> await store.get("run-1", "build", "frontend/index.html")
    b'<html>'
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import structlog
from pydantic import BaseModel, Field

from pipewright.core.config import ArtifactConfig
from pipewright.core.exceptions import (
    ArtifactExistsError,
    ArtifactExpiredError,
    ArtifactNotFoundError,
)
from pipewright.core.models import MAX_DURATION, normalize_artifact_path


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()

DEFAULT_RETENTION = timedelta(hours=24)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Artifact Model
# =============================================================================
class Artifact(BaseModel):
    """A file published by a job.

    Attributes:
        run_id: The Run that produced it.
        job_name: The producing job (the owner).
        path: Workspace-relative path the file was produced at.
        content: File bytes.
        size: Length of ``content`` in bytes.
        created_at: Publication time.
        expires_at: End of the retention window. None never expires.
    """

    model_config = {"frozen": True}

    run_id: str = Field(description="Run that produced the artifact")
    job_name: str = Field(description="Job that owns the artifact")
    path: str = Field(description="Workspace-relative path")
    content: bytes = Field(description="File content", repr=False)
    size: int = Field(default=0, ge=0, description="Content length in bytes")
    created_at: datetime = Field(
        default_factory=_utcnow,
        description="When the artifact was published (UTC)",
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        description="When the artifact expires (None = never)",
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.run_id, self.job_name, self.path)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


# =============================================================================
# Abstract Base Class
# =============================================================================
class ArtifactStore(ABC):
    """Abstract interface for artifact persistence.

    Every implementation shares the retention arithmetic defined here;
    subclasses only store and fetch.

    Methods:
        put(run_id, job_name, path, data): Publish an artifact (once).
        get(run_id, job_name, path): Read an artifact's bytes.
        list_for_job(run_id, job_name): Live artifacts of one job.
        purge_expired(): Destroy expired content.
        count(): Number of live artifacts.
    """

    def __init__(
        self,
        default_retention: timedelta = DEFAULT_RETENTION,
        clock: Optional[Clock] = None,
    ) -> None:
        self._default_retention = default_retention
        self._clock: Clock = clock or _utcnow

    @property
    def default_retention(self) -> timedelta:
        return self._default_retention

    def now(self) -> datetime:
        return self._clock()

    def _expiry(
        self,
        created_at: datetime,
        retention: Optional[timedelta],
        keep_forever: bool,
    ) -> Optional[datetime]:
        if keep_forever:
            return None
        if retention is None:
            retention = self._default_retention
        return created_at + min(retention, MAX_DURATION)

    @abstractmethod
    async def put(
        self,
        run_id: str,
        job_name: str,
        path: str,
        data: bytes,
        retention: Optional[timedelta] = None,
        *,
        keep_forever: bool = False,
    ) -> Artifact:
        """Publish an artifact.

        Args:
            run_id: The producing Run.
            job_name: The producing job.
            path: Workspace-relative path.
            data: File content.
            retention: Retention window. None uses the store default.
            keep_forever: Never expire this artifact.

        Returns:
            The published Artifact.

        Raises:
            ArtifactExistsError: If the key was already published.
        """
        ...

    @abstractmethod
    async def get(self, run_id: str, job_name: str, path: str) -> bytes:
        """Read a published artifact.

        Raises:
            ArtifactNotFoundError: If nothing was published under the key.
            ArtifactExpiredError: If the retention window has elapsed.
        """
        ...

    @abstractmethod
    async def list_for_job(self, run_id: str, job_name: str) -> list[Artifact]:
        """Live (non-expired) artifacts of a job, sorted by path."""
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Destroy the content of expired artifacts.

        Returns:
            How many artifacts were destroyed.
        """
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of live artifacts."""
        ...


# =============================================================================
# In-Memory Implementation
# =============================================================================
class InMemoryArtifactStore(ArtifactStore):
    """In-memory artifact store.

    ``put`` checks and inserts without awaiting in between, so on a single
    event loop the put-once check is atomic.

    Attributes:
        _store: Live artifacts by key.
        _expired: Expiry time of purged artifacts by key.
    """

    def __init__(
        self,
        default_retention: timedelta = DEFAULT_RETENTION,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(default_retention=default_retention, clock=clock)
        self._store: dict[tuple[str, str, str], Artifact] = {}
        self._expired: dict[tuple[str, str, str], datetime] = {}
        self._logger = logger.bind(component="in_memory_artifact_store")

    async def put(
        self,
        run_id: str,
        job_name: str,
        path: str,
        data: bytes,
        retention: Optional[timedelta] = None,
        *,
        keep_forever: bool = False,
    ) -> Artifact:
        path = normalize_artifact_path(path)
        key = (run_id, job_name, path)
        if key in self._store or key in self._expired:
            raise ArtifactExistsError(run_id, job_name, path)

        created_at = self.now()
        artifact = Artifact(
            run_id=run_id,
            job_name=job_name,
            path=path,
            content=bytes(data),
            size=len(data),
            created_at=created_at,
            expires_at=self._expiry(created_at, retention, keep_forever),
        )
        self._store[key] = artifact
        self._logger.debug(
            "artifact_published",
            run_id=run_id,
            job_name=job_name,
            path=path,
            size=artifact.size,
        )
        return artifact

    async def get(self, run_id: str, job_name: str, path: str) -> bytes:
        path = normalize_artifact_path(path)
        key = (run_id, job_name, path)

        if key in self._expired:
            raise ArtifactExpiredError(run_id, job_name, path, self._expired[key].isoformat())

        artifact = self._store.get(key)
        if artifact is None:
            raise ArtifactNotFoundError(run_id, job_name, path)
        if artifact.is_expired(self.now()):
            raise ArtifactExpiredError(run_id, job_name, path, artifact.expires_at.isoformat())
        return artifact.content

    async def list_for_job(self, run_id: str, job_name: str) -> list[Artifact]:
        now = self.now()
        artifacts = [
            a for a in self._store.values()
            if a.run_id == run_id and a.job_name == job_name and not a.is_expired(now)
        ]
        return sorted(artifacts, key=lambda a: a.path)

    async def purge_expired(self) -> int:
        now = self.now()
        expired = [key for key, a in self._store.items() if a.is_expired(now)]
        for key in expired:
            self._expired[key] = self._store.pop(key).expires_at
        if expired:
            self._logger.info("artifacts_purged", count=len(expired))
        return len(expired)

    async def count(self) -> int:
        now = self.now()
        return sum(1 for a in self._store.values() if not a.is_expired(now))


# =============================================================================
# File System Implementation
# =============================================================================
# Layout:
#   <root>/<run_id>/<job_name>/files/<path>    artifact content
#   <root>/<run_id>/<job_name>/index.json      {path: {created_at, expires_at, size}}
#
# Run ids and job names are percent-encoded into a single path segment, so
# "build/frontend" stays one directory and ".." never leaves the root.
#
# Content files are created with O_EXCL so two writers can never publish the
# same key. Blocking file I/O runs in a worker thread.
# =============================================================================
class FileSystemArtifactStore(ArtifactStore):
    """Artifact store that keeps content on disk below ``root``.

    Example:
        >>> store = FileSystemArtifactStore("/var/lib/pipewright/artifacts")
    """

    INDEX_FILE = "index.json"

    def __init__(
        self,
        root: str | Path,
        default_retention: timedelta = DEFAULT_RETENTION,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(default_retention=default_retention, clock=clock)
        self._root = Path(root)
        self._index_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._logger = logger.bind(component="filesystem_artifact_store", root=str(self._root))

    @property
    def root(self) -> Path:
        return self._root

    # -------------------------------------------------------------------------
    # Paths and Index
    # -------------------------------------------------------------------------
    @staticmethod
    def _segment(name: str) -> str:
        return quote(name, safe="").replace(".", "%2E")

    def _job_dir(self, run_id: str, job_name: str) -> Path:
        return self._root / self._segment(run_id) / self._segment(job_name)

    def _content_path(self, run_id: str, job_name: str, path: str) -> Path:
        return self._job_dir(run_id, job_name) / "files" / path

    def _index_lock(self, run_id: str, job_name: str) -> asyncio.Lock:
        return self._index_locks.setdefault((run_id, job_name), asyncio.Lock())

    def _read_index(self, run_id: str, job_name: str) -> dict[str, dict]:
        index_path = self._job_dir(run_id, job_name) / self.INDEX_FILE
        if not index_path.exists():
            return {}
        with open(index_path) as f:
            return json.load(f)

    def _write_index(self, run_id: str, job_name: str, index: dict[str, dict]) -> None:
        index_path = self._job_dir(run_id, job_name) / self.INDEX_FILE
        index_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = index_path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(index, f, indent=2, sort_keys=True)
        os.replace(tmp_path, index_path)

    @staticmethod
    def _entry_expiry(entry: dict) -> Optional[datetime]:
        expires_at = entry.get("expires_at")
        return datetime.fromisoformat(expires_at) if expires_at else None

    def _entry_expired(self, entry: dict, now: datetime) -> bool:
        if entry.get("purged"):
            return True
        expires_at = self._entry_expiry(entry)
        return expires_at is not None and now >= expires_at

    # -------------------------------------------------------------------------
    # Blocking Helpers (run in a worker thread)
    # -------------------------------------------------------------------------
    def _write_content(self, target: Path, data: bytes) -> bool:
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        return True

    # -------------------------------------------------------------------------
    # ArtifactStore API
    # -------------------------------------------------------------------------
    async def put(
        self,
        run_id: str,
        job_name: str,
        path: str,
        data: bytes,
        retention: Optional[timedelta] = None,
        *,
        keep_forever: bool = False,
    ) -> Artifact:
        path = normalize_artifact_path(path)
        async with self._index_lock(run_id, job_name):
            index = await asyncio.to_thread(self._read_index, run_id, job_name)
            if path in index:
                raise ArtifactExistsError(run_id, job_name, path)

            target = self._content_path(run_id, job_name, path)
            written = await asyncio.to_thread(self._write_content, target, bytes(data))
            if not written:
                raise ArtifactExistsError(run_id, job_name, path)

            created_at = self.now()
            expires_at = self._expiry(created_at, retention, keep_forever)
            index[path] = {
                "created_at": created_at.isoformat(),
                "expires_at": expires_at.isoformat() if expires_at else None,
                "size": len(data),
            }
            await asyncio.to_thread(self._write_index, run_id, job_name, index)

        self._logger.debug(
            "artifact_published",
            run_id=run_id,
            job_name=job_name,
            path=path,
            size=len(data),
        )
        return Artifact(
            run_id=run_id,
            job_name=job_name,
            path=path,
            content=bytes(data),
            size=len(data),
            created_at=created_at,
            expires_at=expires_at,
        )

    async def get(self, run_id: str, job_name: str, path: str) -> bytes:
        path = normalize_artifact_path(path)
        index = await asyncio.to_thread(self._read_index, run_id, job_name)
        entry = index.get(path)
        if entry is None:
            raise ArtifactNotFoundError(run_id, job_name, path)
        if self._entry_expired(entry, self.now()):
            raise ArtifactExpiredError(run_id, job_name, path, entry.get("expires_at") or "")
        return await asyncio.to_thread(self._content_path(run_id, job_name, path).read_bytes)

    async def list_for_job(self, run_id: str, job_name: str) -> list[Artifact]:
        index = await asyncio.to_thread(self._read_index, run_id, job_name)
        now = self.now()
        artifacts: list[Artifact] = []
        for path in sorted(index):
            entry = index[path]
            if self._entry_expired(entry, now):
                continue
            content = await asyncio.to_thread(self._content_path(run_id, job_name, path).read_bytes)
            artifacts.append(Artifact(
                run_id=run_id,
                job_name=job_name,
                path=path,
                content=content,
                size=entry.get("size", len(content)),
                created_at=datetime.fromisoformat(entry["created_at"]),
                expires_at=self._entry_expiry(entry),
            ))
        return artifacts

    def _job_keys(self) -> list[tuple[str, str]]:
        if not self._root.exists():
            return []
        return [
            (unquote(index_path.parent.parent.name), unquote(index_path.parent.name))
            for index_path in self._root.glob(f"*/*/{self.INDEX_FILE}")
        ]

    async def purge_expired(self) -> int:
        now = self.now()
        purged = 0
        for run_id, job_name in await asyncio.to_thread(self._job_keys):
            async with self._index_lock(run_id, job_name):
                index = await asyncio.to_thread(self._read_index, run_id, job_name)
                changed = False
                for path, entry in index.items():
                    if entry.get("purged") or not self._entry_expired(entry, now):
                        continue
                    content_path = self._content_path(run_id, job_name, path)
                    await asyncio.to_thread(content_path.unlink, True)
                    entry["purged"] = True
                    changed = True
                    purged += 1
                if changed:
                    await asyncio.to_thread(self._write_index, run_id, job_name, index)
        if purged:
            self._logger.info("artifacts_purged", count=purged)
        return purged

    async def count(self) -> int:
        now = self.now()
        total = 0
        for run_id, job_name in await asyncio.to_thread(self._job_keys):
            index = await asyncio.to_thread(self._read_index, run_id, job_name)
            total += sum(1 for entry in index.values() if not self._entry_expired(entry, now))
        return total


# =============================================================================
# Factory
# =============================================================================
def create_artifact_store(config: ArtifactConfig, clock: Optional[Clock] = None) -> ArtifactStore:
    """Create an artifact store based on configuration.

        - "memory"     → InMemoryArtifactStore
        - "filesystem" → FileSystemArtifactStore rooted at ``config.root``

    Raises:
        ValueError: If the backend is not recognized.
    """
    backend = config.backend.lower()

    if backend == "memory":
        return InMemoryArtifactStore(default_retention=config.default_retention, clock=clock)
    if backend == "filesystem":
        return FileSystemArtifactStore(
            root=config.root,
            default_retention=config.default_retention,
            clock=clock,
        )

    raise ValueError(
        f"Unknown artifact backend: '{backend}'. Available backends: 'memory', 'filesystem'."
    )
