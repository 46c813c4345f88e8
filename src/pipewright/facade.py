"""
pipewright.facade - Pipewright Top-Level Facade
=================================================

The single entry point that wires every layer together: configuration,
artifact storage, execution environments, the registry, and the pipeline
engine.

Architecture Context:
    ┌──────────────────────────────────────────────────┐
    │               Pipewright (Facade)                │
    │                                                  │
    │  ┌────────────────────────────────────────────┐  │
    │  │          Orchestration Layer               │  │
    │  │  PipelineEngine, JobRunner, StageGraph     │  │
    │  │  TriggerGate, DependencyResolver, RunStore │  │
    │  └─────────────────────┬──────────────────────┘  │
    │                        │                         │
    │  ┌─────────────────────▼──────────────────────┐  │
    │  │         Infrastructure Layer               │  │
    │  │  ArtifactStore, ExecutionEnvironment       │  │
    │  └─────────────────────┬──────────────────────┘  │
    │                        │                         │
    │  ┌─────────────────────▼──────────────────────┐  │
    │  │          Integration Layer                 │  │
    │  │  ContainerRegistry (docker CLI, mock)      │  │
    │  └────────────────────────────────────────────┘  │
    └──────────────────────────────────────────────────┘

Usage:
    >>> from pipewright import Pipewright
    >>> from pipewright.core.models import TriggerEvent
    >>>
    >>> async with Pipewright() as pw:
    ...     state = await pw.run_pipeline(
    ...         ".pipewright.yml",
    ...         TriggerEvent.branch("main"),
    ...         variables={"IMAGE_NAME": "registry.example.com/frontend:1.4.0"},
    ...     )
    ...     print(state.status)  # RunStatus.SUCCEEDED
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Union

import structlog

from pipewright.core.config import PipewrightConfig
from pipewright.core.loader import load_pipeline
from pipewright.core.models import Pipeline, TriggerEvent
from pipewright.core.state import RunState
from pipewright.infrastructure.artifact_store import ArtifactStore, create_artifact_store
from pipewright.infrastructure.environments import EnvironmentFactory, environment_factory
from pipewright.integrations.registry.base import ContainerRegistry, RegistryCredentials
from pipewright.integrations.registry.factory import create_registry
from pipewright.orchestration.job_runner import JobRunner
from pipewright.orchestration.pipeline_engine import PipelineEngine
from pipewright.orchestration.publish import PublishStep
from pipewright.orchestration.run_store import InMemoryRunStore, RunStore
from pipewright.orchestration.stage_graph import StageGraph


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()

PipelineSource = Union[Pipeline, str, Path]


class Pipewright:
    """Top-level facade for running pipelines.

    Lifecycle:
        1. ``Pipewright(config)``: build all components from configuration
        2. ``await initialize()``: connect the run store
        3. ``await run_pipeline(...)``: execute Runs
        4. ``await shutdown()``: disconnect

    Or use the async context manager:
        async with Pipewright(config) as pw:
            ...

    Every component can be replaced through a keyword argument, which is how
    tests inject fake clocks, mock registries, and scripted environments.

    Attributes:
        _config: Pipewright configuration.
        _artifact_store: Artifact persistence.
        _run_store: Run archive.
        _registry: Container registry client.
        _engine: The pipeline engine.
        _initialized: Whether initialize() has been called.
    """

    def __init__(
        self,
        config: Optional[PipewrightConfig] = None,
        *,
        artifact_store: Optional[ArtifactStore] = None,
        run_store: Optional[RunStore] = None,
        registry: Optional[ContainerRegistry] = None,
        credentials: Optional[RegistryCredentials] = None,
        environments: Optional[EnvironmentFactory] = None,
    ) -> None:
        """Initialize the Pipewright facade.

        Args:
            config: Configuration. Defaults to PipewrightConfig(), which
                reads PIPEWRIGHT_* environment variables.
            artifact_store: Custom artifact store (default from config).
            run_store: Custom run archive (default InMemoryRunStore).
            registry: Custom registry client (default from config).
            credentials: Registry credentials (default from config).
            environments: Custom environment factory (default from config).
        """
        # --- Configuration ---
        self._config = config or PipewrightConfig()

        # --- Infrastructure Layer ---
        self._artifact_store = artifact_store or create_artifact_store(self._config.artifacts)
        self._environments = environments or environment_factory(self._config.runner)

        # --- Integration Layer ---
        self._registry = registry or create_registry(self._config.registry)
        self._credentials = credentials or RegistryCredentials.from_config(self._config.registry)

        # --- Orchestration Layer ---
        self._run_store = run_store or InMemoryRunStore()
        self._runner = JobRunner(
            artifact_store=self._artifact_store,
            publisher=PublishStep(self._registry, self._credentials),
            config=self._config.runner,
        )
        self._engine = PipelineEngine(
            runner=self._runner,
            artifact_store=self._artifact_store,
            run_store=self._run_store,
            environment_factory=self._environments,
            max_parallel_jobs=self._config.runner.max_parallel_jobs,
            run_retention=self._config.run_retention,
        )

        # --- Tracking ---
        self._initialized = False
        self._logger = logger.bind(component="pipewright")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> PipewrightConfig:
        return self._config

    @property
    def artifact_store(self) -> ArtifactStore:
        return self._artifact_store

    @property
    def run_store(self) -> RunStore:
        return self._run_store

    @property
    def registry(self) -> ContainerRegistry:
        return self._registry

    @property
    def engine(self) -> PipelineEngine:
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def initialize(self) -> None:
        """Connect the run store. Idempotent."""
        if self._initialized:
            self._logger.debug("pipewright_already_initialized")
            return

        await self._run_store.connect()
        self._initialized = True
        self._logger.info(
            "pipewright_initialized",
            executor=self._config.runner.executor,
            artifact_backend=self._config.artifacts.backend,
        )

    async def shutdown(self) -> None:
        """Disconnect the run store. Idempotent."""
        if not self._initialized:
            self._logger.debug("pipewright_not_initialized_skipping_shutdown")
            return

        await self._run_store.disconnect()
        self._initialized = False
        self._logger.info("pipewright_shutdown_complete")

    async def __aenter__(self) -> Pipewright:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # =========================================================================
    # Pipelines
    # =========================================================================

    @staticmethod
    def load_pipeline(path: Union[str, Path]) -> Pipeline:
        """Load a pipeline definition file.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If the definition is malformed.
        """
        return load_pipeline(path)

    def validate(self, pipeline: PipelineSource) -> StageGraph:
        """Validate a pipeline (or definition file) without running it.

        Raises:
            ValidationError: If the definition breaks a structural rule.
        """
        return StageGraph(self._resolve_pipeline(pipeline))

    async def run_pipeline(
        self,
        pipeline: PipelineSource,
        event: TriggerEvent,
        variables: Optional[dict[str, str]] = None,
    ) -> RunState:
        """Execute a pipeline for a trigger event.

        Args:
            pipeline: A Pipeline or the path of a definition file.
            event: The branch or tag event.
            variables: Variables injected into this Run only.

        Returns:
            The final RunState.

        Raises:
            RuntimeError: If the facade is not initialized.
            ValidationError: If the definition is invalid (no Run is created).
        """
        self._ensure_initialized()
        definition = self._resolve_pipeline(pipeline)

        self._logger.info(
            "pipeline_run_requested",
            pipeline=definition.name,
            ref=event.ref,
            ref_kind=event.kind.value,
        )
        return await self._engine.run(definition, event, variables)

    # =========================================================================
    # Runs and Artifacts
    # =========================================================================

    async def get_run(self, run_id: str) -> Optional[RunState]:
        self._ensure_initialized()
        return await self._run_store.get_run(run_id)

    async def list_runs(self, pipeline_name: Optional[str] = None) -> list[RunState]:
        self._ensure_initialized()
        return await self._run_store.list_runs(pipeline_name)

    async def get_artifact(self, run_id: str, job_name: str, path: str) -> bytes:
        """Read an artifact of a Run.

        Raises:
            ArtifactNotFoundError: If nothing was published under the key.
            ArtifactExpiredError: If the retention window has elapsed.
        """
        return await self._artifact_store.get(run_id, job_name, path)

    async def purge_expired(self) -> dict[str, int]:
        """Destroy expired artifacts and drop expired Runs.

        Returns:
            Counts of purged artifacts and runs.
        """
        self._ensure_initialized()
        artifacts = await self._artifact_store.purge_expired()
        runs = await self._run_store.purge_expired(self._artifact_store.now())
        self._logger.info("retention_applied", artifacts=artifacts, runs=runs)
        return {"artifacts": artifacts, "runs": runs}

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _resolve_pipeline(pipeline: PipelineSource) -> Pipeline:
        if isinstance(pipeline, Pipeline):
            return pipeline
        return load_pipeline(pipeline)

    def _ensure_initialized(self) -> None:
        """Raises RuntimeError if initialize() has not been called."""
        if not self._initialized:
            raise RuntimeError(
                "Pipewright has not been initialized. "
                "Call await pw.initialize() or use 'async with Pipewright() as pw:'"
            )

    def __repr__(self) -> str:
        return (
            f"Pipewright("
            f"initialized={self._initialized}, "
            f"executor={self._config.runner.executor!r})"
        )
