"""
pipewright.core.state - Run State Model
=========================================

A RunState is the "master record" of one pipeline execution. The
PipelineEngine creates it when a trigger event arrives and replaces it with
an updated copy after every change; the RunStore archives each copy.

State Lifecycle:
    PENDING → RUNNING → SUCCEEDED
                      ↘ FAILED      (terminal, irreversible)

    Stage history records each stage as it starts and finishes; job results
    are stored in declaration order so that two Runs of the same definition
    can be compared job by job.

Design Decision - Immutable Snapshots:
    RunState is treated as immutable. Updates go through model_copy() (or
    transition_to() for status changes), which keeps every archived snapshot
    intact.

Run variables are deliberately absent: credentials and image names injected
at Run time never end up in the archived record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from pipewright.core.enums import JobStatus, RefKind, RunStatus
from pipewright.core.exceptions import StateError
from pipewright.core.models import JobResult


def _now() -> datetime:
    """Get the current UTC timestamp."""
    return datetime.now(timezone.utc)


def _generate_run_id() -> str:
    return f"run-{uuid4()}"


# =============================================================================
# Allowed Run Transitions
# =============================================================================
# Anything not listed here is rejected with StateError. Terminal states map
# to an empty set.
# =============================================================================
_TRANSITIONS: dict[RunStatus, frozenset[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING}),
    RunStatus.RUNNING: frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED}),
    RunStatus.SUCCEEDED: frozenset(),
    RunStatus.FAILED: frozenset(),
}


class RunState(BaseModel):
    """Runtime state of one pipeline Run.

    Attributes:
        run_id: Unique Run identifier.
        pipeline_name: Name of the executed pipeline.
        ref: The branch or tag that triggered the Run.
        ref_kind: Whether ``ref`` is a branch or a tag.
        status: Current Run status.
        current_stage: Stage being executed (None before start / after end).
        stage_history: One entry per finished stage with timestamps and
            outcome.
        job_results: Map of job name → JobResult, in declaration order.
        error_log: Chronological list of job-level errors.
        created_at: When the Run was created.
        started_at: When the Run transitioned to RUNNING.
        finished_at: When the Run reached a terminal state.
        expires_at: When the archived Run may be purged.
    """

    run_id: str = Field(
        default_factory=_generate_run_id,
        description="Unique Run identifier",
    )
    pipeline_name: str = Field(
        description="Name of the executed pipeline",
    )
    ref: str = Field(
        description="Triggering branch or tag",
    )
    ref_kind: RefKind = Field(
        default=RefKind.BRANCH,
        description="Kind of the triggering ref",
    )
    status: RunStatus = Field(
        default=RunStatus.PENDING,
        description="Current Run status",
    )
    current_stage: Optional[str] = Field(
        default=None,
        description="Stage currently executing",
    )
    stage_history: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Ordered record of executed stages",
    )
    job_results: dict[str, JobResult] = Field(
        default_factory=dict,
        description="Map of job name → JobResult",
    )
    error_log: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Chronological job-level errors",
    )
    created_at: datetime = Field(
        default_factory=_now,
        description="Run creation timestamp (UTC)",
    )
    started_at: Optional[datetime] = Field(
        default=None,
        description="Run start timestamp (UTC)",
    )
    finished_at: Optional[datetime] = Field(
        default=None,
        description="Run completion timestamp (UTC)",
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        description="When the archived Run may be purged",
    )

    # -------------------------------------------------------------------------
    # State Machine
    # -------------------------------------------------------------------------
    def transition_to(self, status: RunStatus) -> RunState:
        """Return a copy of this state moved to ``status``.

        Sets started_at when entering RUNNING and finished_at when entering
        a terminal state.

        Raises:
            StateError: If the transition is not allowed.
        """
        if status not in _TRANSITIONS[self.status]:
            raise StateError(
                message=f"Illegal run transition {self.status.value} → {status.value}",
                error_code="ILLEGAL_TRANSITION",
                details={"run_id": self.run_id, "from": self.status.value, "to": status.value},
            )

        update: dict[str, Any] = {"status": status}
        if status == RunStatus.RUNNING:
            update["started_at"] = _now()
        if status.is_terminal:
            update["finished_at"] = _now()
            update["current_stage"] = None
        return self.model_copy(update=update)

    def with_job_result(self, result: JobResult) -> RunState:
        """Return a copy with ``result`` recorded."""
        job_results = dict(self.job_results)
        job_results[result.job_name] = result
        return self.model_copy(update={"job_results": job_results})

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------
    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def job_statuses(self) -> list[tuple[str, JobStatus]]:
        """(job name, status) pairs in declaration order."""
        return [(name, result.status) for name, result in self.job_results.items()]

    @property
    def failed_jobs(self) -> list[JobResult]:
        return [r for r in self.job_results.values() if r.status == JobStatus.FAILED]

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def status_of(self, job_name: str) -> Optional[JobStatus]:
        """Status of a job in this Run, None if it has no result yet."""
        result = self.job_results.get(job_name)
        return result.status if result else None
