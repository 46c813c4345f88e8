"""
pipewright.core.enums - Type-Safe Enumerations
================================================

This module defines the enumeration types used throughout Pipewright.

All enums inherit from both `str` and `Enum`, which means:
    - They serialize to strings in JSON/YAML (Pydantic-friendly)
    - They can be compared with plain strings: RunStatus.FAILED == "failed"

    ┌─────────────────────────────────────────────────────────────────┐
    │  RUN LEVEL                                                      │
    │    RunStatus: PENDING → RUNNING → (SUCCEEDED | FAILED)          │
    ├─────────────────────────────────────────────────────────────────┤
    │  JOB LEVEL                                                      │
    │    JobStatus: PENDING → RUNNING → (SUCCEEDED | FAILED)          │
    │               SKIPPED (trigger gate) / BLOCKED (earlier failure)│
    ├─────────────────────────────────────────────────────────────────┤
    │  TRIGGER EVENTS                                                 │
    │    RefKind: BRANCH or TAG                                       │
    └─────────────────────────────────────────────────────────────────┘
"""

from enum import Enum


# =============================================================================
# Run Status Enumeration
# =============================================================================
# The state machine of a single pipeline Run:
#
#   PENDING → RUNNING → (SUCCEEDED | FAILED)
#
# SUCCEEDED and FAILED are terminal. The transition rules are enforced by
# RunState.transition_to() in core/state.py.
# =============================================================================
class RunStatus(str, Enum):
    """Lifecycle states of a pipeline Run.

    State Transitions:
        PENDING → RUNNING:    The engine starts executing the first stage
        RUNNING → SUCCEEDED:  Every stage finished without a required failure
        RUNNING → FAILED:     A required job failed; later stages never start

    Usage:
        >>> run.status == RunStatus.SUCCEEDED
        True
    """

    PENDING = "pending"         # Run created, nothing executed yet
    RUNNING = "running"         # Stages are being executed
    SUCCEEDED = "succeeded"     # All stages completed
    FAILED = "failed"           # A required job failed (terminal, irreversible)

    @property
    def is_terminal(self) -> bool:
        """True for SUCCEEDED and FAILED."""
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


# =============================================================================
# Job Status Enumeration
# =============================================================================
# Tracks a single job within a Run.
#
#   PENDING → RUNNING → (SUCCEEDED | FAILED)
#   PENDING → SKIPPED   (the trigger gate rejected the job for this event)
#   PENDING → BLOCKED   (an earlier stage failed, the job never started)
# =============================================================================
class JobStatus(str, Enum):
    """Lifecycle states for a job within a Run.

    SKIPPED and BLOCKED are both "never started", but for different reasons:
    SKIPPED is a deliberate decision of the trigger gate and does not affect
    the Run status, BLOCKED is the fallout of an earlier stage failing.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        """True once the job can no longer change state."""
        return self not in (JobStatus.PENDING, JobStatus.RUNNING)


class RefKind(str, Enum):
    """What kind of git ref triggered a Run."""

    BRANCH = "branch"
    TAG = "tag"
