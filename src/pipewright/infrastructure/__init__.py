"""
pipewright.infrastructure - Storage & Execution Layer
=======================================================

The components the orchestration layer relies on to store files and to run
commands in isolation.

Architecture:
    ┌─────────────── ORCHESTRATION LAYER ─────────────────┐
    │  PipelineEngine, JobRunner, DependencyResolver       │
    └──────────────┬──────────────────────┬───────────────┘
                   │ put / get            │ provision / execute
                   ▼                      ▼
    ┌─────────────── INFRASTRUCTURE LAYER ────────────────┐
    │                                                      │
    │  ArtifactStore (ABC)        ExecutionEnvironment     │
    │    ├── InMemoryArtifactStore   ├── LocalEnvironment  │
    │    └── FileSystemArtifactStore └── DockerEnvironment │
    │                                                      │
    └──────────────────────────────────────────────────────┘

Usage:
    from pipewright.infrastructure import InMemoryArtifactStore, LocalEnvironment
"""

from pipewright.infrastructure.artifact_store import (
    Artifact,
    ArtifactStore,
    FileSystemArtifactStore,
    InMemoryArtifactStore,
    create_artifact_store,
)
from pipewright.infrastructure.environments import (
    CommandResult,
    DockerEnvironment,
    EnvironmentFactory,
    ExecutionEnvironment,
    LocalEnvironment,
    create_environment,
    environment_factory,
)

__all__ = [
    "Artifact",
    "ArtifactStore",
    "InMemoryArtifactStore",
    "FileSystemArtifactStore",
    "create_artifact_store",
    "CommandResult",
    "ExecutionEnvironment",
    "LocalEnvironment",
    "DockerEnvironment",
    "EnvironmentFactory",
    "create_environment",
    "environment_factory",
]
