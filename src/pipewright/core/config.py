"""
pipewright.core.config - Configuration Management
===================================================

Configuration can be loaded from multiple sources with the following
priority (highest first):

    1. Explicit constructor arguments
    2. Environment variables (prefixed with PIPEWRIGHT_)
    3. YAML configuration file (pipewright.yaml)
    4. Default values defined in the models below

Architecture Context:
    The top-level PipewrightConfig is created once and handed to the
    components that need it:

        PipewrightConfig
            ├── RunnerConfig    → environment factory, JobRunner, PipelineEngine
            ├── ArtifactConfig  → ArtifactStore
            └── RegistryConfig  → ContainerRegistry, PublishStep

Registry credentials live here and are passed explicitly into the publish
step. Jobs never read them from the process environment.

Environment Variables:
    PIPEWRIGHT_LOG_LEVEL=DEBUG
    PIPEWRIGHT_RUNNER__EXECUTOR=docker
    PIPEWRIGHT_ARTIFACTS__DEFAULT_RETENTION_HOURS=48
    PIPEWRIGHT_REGISTRY__URL=registry.example.com
    PIPEWRIGHT_REGISTRY__USERNAME=ci
    PIPEWRIGHT_REGISTRY__PASSWORD=...
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings

from pipewright.core.exceptions import ConfigurationError


# =============================================================================
# Runner Configuration
# =============================================================================
# Controls how jobs are executed:
#   - "local":  each job gets a fresh temporary directory on this host and
#               its script lines run through the local shell
#   - "docker": each job gets a fresh container started from the job image
# =============================================================================
class RunnerConfig(BaseModel):
    """Configuration for job execution.

    Attributes:
        executor: Which execution environment implementation to use.
        workspace_root: Parent directory for local job workspaces. None uses
            the system temporary directory.
        default_image: Image used for jobs that don't name one.
        job_timeout_seconds: Default wall-clock limit for a single job.
        max_parallel_jobs: Upper bound on concurrently running jobs of a stage.
        shell: Shell used to interpret each script line.
    """

    executor: Literal["local", "docker"] = Field(
        default="local",
        description="Execution environment: 'local' (temp dir) or 'docker'",
    )
    workspace_root: Optional[str] = Field(
        default=None,
        description="Parent directory for local job workspaces",
    )
    default_image: str = Field(
        default="alpine:3.20",
        description="Image for jobs that do not declare one",
    )
    job_timeout_seconds: int = Field(
        default=3600,
        ge=1,
        le=86400,
        description="Default maximum job duration in seconds",
    )
    max_parallel_jobs: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum number of jobs of one stage running at once",
    )
    shell: str = Field(
        default="/bin/sh",
        description="Shell that interprets script lines",
    )


# =============================================================================
# Artifact Configuration
# =============================================================================
class ArtifactConfig(BaseModel):
    """Configuration for the artifact store.

    Attributes:
        backend: "memory" keeps artifacts in process, "filesystem" writes
            them below ``root``.
        root: Directory for the filesystem backend.
        default_retention_hours: Retention used when a job's artifacts don't
            declare ``expire_in``.
    """

    backend: Literal["memory", "filesystem"] = Field(
        default="memory",
        description="Artifact storage backend",
    )
    root: str = Field(
        default=".pipewright/artifacts",
        description="Root directory for the filesystem backend",
    )
    default_retention_hours: float = Field(
        default=24,
        gt=0,
        description="Default artifact retention window in hours",
    )

    @property
    def default_retention(self) -> timedelta:
        return timedelta(hours=self.default_retention_hours)


# =============================================================================
# Registry Configuration
# =============================================================================
class RegistryConfig(BaseModel):
    """Container registry connection and credentials.

    Attributes:
        provider: "docker" drives the docker CLI, "mock" records calls.
        url: Registry host, e.g. "registry.example.com:5050". None means the
            registry implied by the image reference.
        username: Registry user.
        password: Registry password or token. Kept as SecretStr so it never
            shows up in reprs or logs.
    """

    provider: Literal["docker", "mock"] = Field(
        default="docker",
        description="Registry client implementation",
    )
    url: Optional[str] = Field(
        default=None,
        description="Registry host (None = derived from the image reference)",
    )
    username: Optional[str] = Field(
        default=None,
        description="Registry user name",
    )
    password: Optional[SecretStr] = Field(
        default=None,
        description="Registry password or access token",
    )


# =============================================================================
# Main Configuration
# =============================================================================
# Environment Variable Mapping:
#   PIPEWRIGHT_LOG_LEVEL          → config.log_level
#   PIPEWRIGHT_RUNNER__EXECUTOR   → config.runner.executor
#   PIPEWRIGHT_REGISTRY__PASSWORD → config.registry.password
# =============================================================================
class PipewrightConfig(BaseSettings):
    """Top-level configuration for Pipewright.

    Attributes:
        log_level: Logging level for structlog output.
        run_retention_hours: How long finished Runs stay in the run store.
        runner: Job execution settings (see RunnerConfig).
        artifacts: Artifact store settings (see ArtifactConfig).
        registry: Registry settings (see RegistryConfig).

    Example:
        >>> config = PipewrightConfig(
        ...     log_level="DEBUG",
        ...     runner=RunnerConfig(executor="docker"),
        ... )
    """

    # -------------------------------------------------------------------------
    # General Settings
    # -------------------------------------------------------------------------
    log_level: str = Field(
        default="INFO",
        description="Logging level for the CLI: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    run_retention_hours: float = Field(
        default=168,
        gt=0,
        description="How long finished Runs are kept in the run store",
    )

    # -------------------------------------------------------------------------
    # Nested Configurations
    # -------------------------------------------------------------------------
    runner: RunnerConfig = Field(
        default_factory=RunnerConfig,
        description="Job execution configuration",
    )
    artifacts: ArtifactConfig = Field(
        default_factory=ArtifactConfig,
        description="Artifact store configuration",
    )
    registry: RegistryConfig = Field(
        default_factory=RegistryConfig,
        description="Container registry configuration",
    )

    model_config = {
        "env_prefix": "PIPEWRIGHT_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
    }

    @property
    def run_retention(self) -> timedelta:
        return timedelta(hours=self.run_retention_hours)


# =============================================================================
# Configuration Loader
# =============================================================================
def load_config(path: Optional[str] = None) -> PipewrightConfig:
    """Load Pipewright configuration from a YAML file and/or environment.

    Args:
        path: Path to a YAML configuration file. If None, looks for
            'pipewright.yaml' in the current directory and falls back to
            defaults + environment variables when it's absent.

    Returns:
        A fully validated PipewrightConfig instance.

    Raises:
        FileNotFoundError: If an explicit path is provided but doesn't exist.
        ConfigurationError: If the file does not contain a YAML mapping.
    """
    if path is None:
        default_path = Path("pipewright.yaml")
        if default_path.exists():
            path = str(default_path)

    yaml_data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {path}. "
                f"Create one or use PIPEWRIGHT_* environment variables."
            )

        with open(config_path) as f:
            raw_data = yaml.safe_load(f)

        if raw_data is None:
            raw_data = {}
        if not isinstance(raw_data, dict):
            raise ConfigurationError(
                message=f"Configuration file {path} must contain a mapping",
                details={"path": str(path), "type": type(raw_data).__name__},
            )
        yaml_data = raw_data

    return PipewrightConfig(**yaml_data)


def get_default_config() -> PipewrightConfig:
    """Create a PipewrightConfig from defaults and environment variables."""
    return PipewrightConfig()
