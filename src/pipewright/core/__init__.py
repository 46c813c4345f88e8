"""
pipewright.core - Foundation Layer
====================================

The building blocks every other module in Pipewright depends on:

    - config:      Configuration management (PipewrightConfig and sections)
    - enums:       RunStatus, JobStatus, RefKind
    - models:      Pipeline, Job, TriggerEvent, JobResult
    - exceptions:  Structured exception hierarchy
    - state:       RunState and its state machine
    - loader:      YAML pipeline definitions → Pipeline

Dependency Rule:
    core/ depends on NOTHING else in the pipewright package.
"""

from pipewright.core.config import (
    ArtifactConfig,
    PipewrightConfig,
    RegistryConfig,
    RunnerConfig,
    load_config,
)
from pipewright.core.enums import JobStatus, RefKind, RunStatus
from pipewright.core.exceptions import (
    ArtifactError,
    ArtifactExistsError,
    ArtifactExpiredError,
    ArtifactNotFoundError,
    ConfigurationError,
    ExecutionError,
    MissingArtifactError,
    PipewrightError,
    ProvisioningError,
    RegistryError,
    StateError,
    ValidationError,
)
from pipewright.core.loader import load_pipeline, parse_duration, parse_pipeline
from pipewright.core.models import (
    ArtifactSpec,
    Job,
    JobResult,
    Pipeline,
    PublishSpec,
    TriggerEvent,
    TriggerRule,
)
from pipewright.core.state import RunState

__all__ = [
    # Config
    "PipewrightConfig",
    "RunnerConfig",
    "ArtifactConfig",
    "RegistryConfig",
    "load_config",
    # Enums
    "RunStatus",
    "JobStatus",
    "RefKind",
    # Models
    "Pipeline",
    "Job",
    "ArtifactSpec",
    "TriggerRule",
    "PublishSpec",
    "TriggerEvent",
    "JobResult",
    # State
    "RunState",
    # Loader
    "parse_pipeline",
    "load_pipeline",
    "parse_duration",
    # Exceptions
    "PipewrightError",
    "ConfigurationError",
    "ValidationError",
    "StateError",
    "ExecutionError",
    "ProvisioningError",
    "MissingArtifactError",
    "ArtifactError",
    "ArtifactNotFoundError",
    "ArtifactExpiredError",
    "ArtifactExistsError",
    "RegistryError",
]
