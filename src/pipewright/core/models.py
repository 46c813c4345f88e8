"""
pipewright.core.models - Core Data Models
===========================================

This module defines the Pydantic data models that flow through every layer
of Pipewright.

Model Hierarchy:
    Pipeline      → What runs, in which stage order (the definition)
    Job           → One unit of work inside a stage
    ArtifactSpec  → Which files a job publishes and for how long
    TriggerRule   → Which refs a job runs for (only / except)
    PublishSpec   → Which image a job pushes to the registry
    TriggerEvent  → What started a Run (branch or tag ref)
    JobResult     → What happened when a job ran

Data Flow:
    ┌──────────────┐   Job + inputs      ┌──────────────┐
    │  Pipeline    │ ──────────────────→ │  JobRunner   │
    │  Engine      │                     │  (executes)  │
    │              │ ←────────────────── │              │
    └──────────────┘     JobResult       └──────────────┘
           │
           │  RunState (core/state.py)
           ↓
    ┌──────────────┐
    │  RunStore    │
    └──────────────┘

Pipeline and Job are definitions: they are validated once and never mutated.
Graph-level rules (stage order, dependency direction) are checked by
orchestration/stage_graph.py, not here.
"""

from __future__ import annotations

import posixpath
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pipewright.core.enums import JobStatus, RefKind


# Longest retention or timeout a definition may ask for.
MAX_DURATION = timedelta(days=100 * 365)


def _now() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def normalize_artifact_path(path: str) -> str:
    """Normalize a workspace-relative artifact path.

    "./dist/" becomes "dist". Absolute paths and paths escaping the
    workspace are rejected.

    Raises:
        ValueError: If the path is empty, absolute, or leaves the workspace.
    """
    cleaned = path.strip()
    if not cleaned:
        raise ValueError("artifact path must not be empty")
    if cleaned.startswith("/"):
        raise ValueError(f"artifact path must be relative: {path!r}")
    normalized = posixpath.normpath(cleaned)
    if normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"artifact path escapes the workspace: {path!r}")
    return normalized


def is_regex_pattern(pattern: str) -> bool:
    """Whether a ref pattern is a ``/regular expression/``."""
    return len(pattern) >= 2 and pattern.startswith("/") and pattern.endswith("/")


# =============================================================================
# Artifact Specification
# =============================================================================
class ArtifactSpec(BaseModel):
    """Files a job publishes to the artifact store after it succeeds.

    Attributes:
        paths: Workspace-relative files or directories. Directories are
            published file by file, keeping their relative paths.
        expire_in: Retention window. None means the configured default.
        keep_forever: Artifacts never expire ("expire_in: never").

    Example:
        >>> ArtifactSpec(paths=["frontend"], expire_in=timedelta(hours=1))
    """

    paths: list[str] = Field(
        min_length=1,
        description="Workspace-relative paths to publish",
    )
    expire_in: Optional[timedelta] = Field(
        default=None,
        description="Retention window (None = configured default)",
    )
    keep_forever: bool = Field(
        default=False,
        description="Never expire these artifacts",
    )

    @field_validator("paths")
    @classmethod
    def _normalize_paths(cls, paths: list[str]) -> list[str]:
        return [normalize_artifact_path(p) for p in paths]

    @field_validator("expire_in")
    @classmethod
    def _positive_retention(cls, value: Optional[timedelta]) -> Optional[timedelta]:
        if value is not None and value <= timedelta(0):
            raise ValueError("expire_in must be positive")
        if value is not None and value > MAX_DURATION:
            raise ValueError("expire_in must not exceed 100 years")
        return value


# =============================================================================
# Trigger Rule
# =============================================================================
# Mirrors the familiar `only:` / `except:` keywords of CI definitions.
# Evaluation lives in orchestration/trigger_gate.py.
# =============================================================================
class TriggerRule(BaseModel):
    """Ref patterns that gate whether a job runs for an event.

    Patterns are exact ref names ("main"), regular expressions wrapped in
    slashes ("/^release-.*$/"), or the keywords "branches" and "tags".

    Attributes:
        only: The job runs only if one of these patterns matches.
        except_: The job never runs if one of these patterns matches.
            Spelled ``except`` in definitions.
    """

    model_config = ConfigDict(populate_by_name=True)

    only: list[str] = Field(
        default_factory=list,
        description="Patterns of which at least one must match",
    )
    except_: list[str] = Field(
        default_factory=list,
        alias="except",
        description="Patterns of which none may match",
    )

    @field_validator("only", "except_")
    @classmethod
    def _compilable_patterns(cls, patterns: list[str]) -> list[str]:
        for pattern in patterns:
            if is_regex_pattern(pattern):
                try:
                    re.compile(pattern[1:-1])
                except re.error as e:
                    raise ValueError(f"invalid ref pattern {pattern!r}: {e}") from e
        return patterns

    @property
    def is_empty(self) -> bool:
        return not self.only and not self.except_


class PublishSpec(BaseModel):
    """An image to push to the registry once the job's script succeeded.

    ``image`` may reference Run variables as $NAME or ${NAME}.
    """

    image: str = Field(
        min_length=1,
        description="Image reference to push, may contain $VARIABLES",
    )


# =============================================================================
# Job
# =============================================================================
class Job(BaseModel):
    """A unit of work within a stage, executed in an isolated environment.

    Attributes:
        name: Unique job name within the pipeline.
        stage: Name of the stage this job belongs to.
        image: Execution environment reference (container image). None means
            the runner's default image.
        script: Ordered command strings; the first non-zero exit aborts the job.
        before_script: Lines run before ``script``, same failure semantics.
        after_script: Lines always run after the script. Their failures are
            logged and otherwise ignored.
        variables: Job-level variables, layered over pipeline and Run
            variables.
        artifacts: Files to publish after success.
        dependencies: Jobs whose artifacts must be fetched before this job
            starts. They must have succeeded in the same Run.
        trigger: Optional only/except rule.
        allow_failure: A failure of this job does not fail the stage.
        timeout_seconds: Per-job limit overriding the runner default.
        publish: Optional image to push after success.

    Example:
        >>> Job(
        ...     name="build",
        ...     stage="build",
        ...     image="node:20",
        ...     script=["npm ci", "npm run build"],
        ...     artifacts=ArtifactSpec(paths=["frontend"]),
        ... )
    """

    name: str = Field(
        min_length=1,
        description="Unique job name",
    )
    stage: str = Field(
        default="test",
        min_length=1,
        description="Stage this job belongs to",
    )
    image: Optional[str] = Field(
        default=None,
        description="Execution environment image reference",
    )
    script: list[str] = Field(
        min_length=1,
        description="Ordered shell command lines",
    )
    before_script: list[str] = Field(
        default_factory=list,
        description="Lines executed before the script",
    )
    after_script: list[str] = Field(
        default_factory=list,
        description="Lines always executed after the script",
    )
    variables: dict[str, str] = Field(
        default_factory=dict,
        description="Job-level variables",
    )
    artifacts: Optional[ArtifactSpec] = Field(
        default=None,
        description="Artifacts published after success",
    )
    dependencies: Optional[list[str]] = Field(
        default=None,
        description="Jobs whose artifacts this job needs",
    )
    trigger: Optional[TriggerRule] = Field(
        default=None,
        description="Ref predicate gating this job",
    )
    allow_failure: bool = Field(
        default=False,
        description="Failure of this job does not fail the stage",
    )
    timeout_seconds: Optional[int] = Field(
        default=None,
        ge=1,
        description="Per-job timeout (None = runner default)",
    )
    publish: Optional[PublishSpec] = Field(
        default=None,
        description="Image pushed to the registry after success",
    )

    @property
    def required(self) -> bool:
        """Whether a failure of this job fails the stage."""
        return not self.allow_failure

    @property
    def depends_on(self) -> list[str]:
        return list(self.dependencies or [])


# =============================================================================
# Pipeline
# =============================================================================
class Pipeline(BaseModel):
    """An ordered sequence of stages and the jobs that fill them.

    Attributes:
        name: Human-readable pipeline name, used to group Runs.
        stages: Stage names in execution order.
        jobs: Every job of the pipeline, in declaration order.
        variables: Pipeline-level variables visible to every job.
    """

    name: str = Field(
        default="pipeline",
        description="Pipeline name",
    )
    stages: list[str] = Field(
        min_length=1,
        description="Stage names in execution order",
    )
    jobs: list[Job] = Field(
        min_length=1,
        description="Jobs in declaration order",
    )
    variables: dict[str, str] = Field(
        default_factory=dict,
        description="Pipeline-level variables",
    )

    @property
    def job_names(self) -> list[str]:
        return [job.name for job in self.jobs]

    def get_job(self, name: str) -> Optional[Job]:
        """Look up a job by name, None if there is no such job."""
        for job in self.jobs:
            if job.name == name:
                return job
        return None


# =============================================================================
# Trigger Event
# =============================================================================
class TriggerEvent(BaseModel):
    """The event that creates a Run: a push to a branch or a tag.

    Example:
        >>> TriggerEvent.branch("main")
        >>> TriggerEvent.tag("v1.2.0")
    """

    ref: str = Field(
        min_length=1,
        description="Branch or tag name",
    )
    kind: RefKind = Field(
        default=RefKind.BRANCH,
        description="Whether the ref is a branch or a tag",
    )
    sha: Optional[str] = Field(
        default=None,
        description="Commit the event points at",
    )
    created_at: datetime = Field(
        default_factory=_now,
        description="When the event happened (UTC)",
    )

    @classmethod
    def branch(cls, name: str, sha: Optional[str] = None) -> TriggerEvent:
        return cls(ref=name, kind=RefKind.BRANCH, sha=sha)

    @classmethod
    def tag(cls, name: str, sha: Optional[str] = None) -> TriggerEvent:
        return cls(ref=name, kind=RefKind.TAG, sha=sha)

    def builtin_variables(self) -> dict[str, str]:
        """Variables describing the event, exposed to every job."""
        variables = {"CI": "true", "CI_COMMIT_REF_NAME": self.ref}
        if self.kind == RefKind.BRANCH:
            variables["CI_COMMIT_BRANCH"] = self.ref
        else:
            variables["CI_COMMIT_TAG"] = self.ref
        if self.sha:
            variables["CI_COMMIT_SHA"] = self.sha
        return variables


# =============================================================================
# Job Result
# =============================================================================
class JobResult(BaseModel):
    """Outcome of one job within a Run.

    For failed jobs ``logs`` ends with the output of the failing line, and
    ``failed_line`` / ``exit_code`` say where the script stopped.

    Attributes:
        job_name: The job this result belongs to.
        stage: The job's stage.
        status: Terminal job status.
        logs: Captured output, one entry per line.
        exit_code: Exit status of the failing line (None if not applicable).
        failed_line: The script line that failed.
        error_code: Machine-readable failure reason (e.g. "MISSING_ARTIFACT").
        error_message: Human-readable failure reason.
        artifacts: Paths published to the artifact store.
        image_ref: Image pushed to the registry, if the job published one.
        started_at: When the job started (None if it never started).
        finished_at: When the job reached its terminal state.
    """

    job_name: str = Field(description="Job name")
    stage: str = Field(description="Stage name")
    status: JobStatus = Field(description="Terminal job status")
    logs: list[str] = Field(
        default_factory=list,
        description="Captured job output",
    )
    exit_code: Optional[int] = Field(
        default=None,
        description="Exit status of the failing line",
    )
    failed_line: Optional[str] = Field(
        default=None,
        description="Script line that failed",
    )
    error_code: Optional[str] = Field(
        default=None,
        description="Machine-readable failure reason",
    )
    error_message: Optional[str] = Field(
        default=None,
        description="Human-readable failure reason",
    )
    artifacts: list[str] = Field(
        default_factory=list,
        description="Artifact paths published by this job",
    )
    image_ref: Optional[str] = Field(
        default=None,
        description="Image reference pushed by this job",
    )
    started_at: Optional[datetime] = Field(
        default=None,
        description="Start timestamp (UTC)",
    )
    finished_at: Optional[datetime] = Field(
        default_factory=_now,
        description="Completion timestamp (UTC)",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra details attached by the runner",
    )

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()
