"""
pipewright.core.exceptions - Custom Exception Hierarchy
=========================================================

This module defines a structured exception hierarchy for Pipewright.
Components raise and catch specific exception types that carry contextual
information instead of generic Exception.

Exception Hierarchy:
    PipewrightError (base)
        ├── ConfigurationError     - Invalid config, missing required values
        ├── ValidationError        - Malformed pipeline definition or graph
        ├── StateError             - Illegal Run state transition
        ├── ExecutionError         - Non-zero script exit or job timeout
        ├── ProvisioningError      - Execution environment could not be created
        ├── MissingArtifactError   - A dependency did not succeed in this Run
        ├── ArtifactError
        │     ├── ArtifactNotFoundError  - No artifact under that key
        │     ├── ArtifactExpiredError   - Retention window elapsed
        │     └── ArtifactExistsError    - Key already written (put-once)
        └── RegistryError          - Registry login/push failed

Where each error is caught:
    ValidationError       → before any Run is created (PipelineEngine.run)
    ExecutionError        → per job (JobRunner.run → failed JobResult)
    MissingArtifactError  → per job, before provisioning (PipelineEngine)
    ArtifactExpiredError  → on read (ArtifactStore.get)

No job-level error is retried: every one of them ends up as a FAILED job
result and, for required jobs, a FAILED Run.

Usage:
    >>> raise ExecutionError(
    ...     message="Command exited with status 2",
    ...     job_name="build",
    ...     line="npm run build",
    ...     exit_code=2,
    ... )
"""

from __future__ import annotations

from typing import Any, Optional


# =============================================================================
# Base Exception
# =============================================================================
# All Pipewright exceptions inherit from this base class, so callers can
# catch every framework error with a single except clause:
#
#   try:
#       state = await engine.run(pipeline, event)
#   except PipewrightError as e:
#       logger.error(e.message, error_code=e.error_code, details=e.details)
# =============================================================================
class PipewrightError(Exception):
    """Base exception for all Pipewright errors.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable error code (UPPER_SNAKE_CASE).
        details: Arbitrary dict with additional debugging context.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception to a dictionary.

        Used for structlog fields and for the Run's error log.

        Returns:
            Dictionary with error_type, message, error_code, and details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Error
# =============================================================================
class ConfigurationError(PipewrightError):
    """Raised when Pipewright configuration is invalid or missing.

    Example:
        >>> raise ConfigurationError(
        ...     message="Configuration file must contain a mapping",
        ...     details={"path": "pipewright.yaml"},
        ... )
    """

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Validation Error
# =============================================================================
# Raised for malformed pipeline definitions: YAML that does not describe a
# pipeline, unknown stages, dependencies that point forward, cycles between
# jobs of the same stage. Always raised before a Run exists.
# =============================================================================
class ValidationError(PipewrightError):
    """Raised when a pipeline definition or its stage graph is malformed.

    Attributes:
        location: Where in the definition the problem was found, e.g.
            "jobs.test.dependencies". Empty when the whole pipeline is at fault.

    Example:
        >>> raise ValidationError(
        ...     message="Job 'test' depends on 'deploy' from a later stage",
        ...     location="jobs.test.dependencies",
        ...     error_code="FORWARD_DEPENDENCY",
        ... )
    """

    def __init__(
        self,
        message: str,
        location: str = "",
        error_code: str = "VALIDATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if location:
            enriched_details["location"] = location

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.location = location


# =============================================================================
# State Error
# =============================================================================
class StateError(PipewrightError):
    """Raised on an illegal Run state transition.

    FAILED and SUCCEEDED are terminal; moving out of them, or skipping
    RUNNING, is rejected.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "STATE_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Execution Error
# =============================================================================
# Raised by the job runner when a script line exits non-zero or the job runs
# past its timeout. Carries the failing line so the user can see where the
# job stopped.
# =============================================================================
class ExecutionError(PipewrightError):
    """Raised when a job's script fails.

    Attributes:
        job_name: The job whose script failed.
        line: The script line that failed (None for timeouts between lines).
        exit_code: The exit status of the failing line, if any.

    Example:
        >>> raise ExecutionError(
        ...     message="Command exited with status 1",
        ...     job_name="test",
        ...     line="npm test",
        ...     exit_code=1,
        ... )
    """

    def __init__(
        self,
        message: str,
        job_name: str,
        line: Optional[str] = None,
        exit_code: Optional[int] = None,
        error_code: str = "SCRIPT_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["job_name"] = job_name
        if line is not None:
            enriched_details["line"] = line
        if exit_code is not None:
            enriched_details["exit_code"] = exit_code

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.job_name = job_name
        self.line = line
        self.exit_code = exit_code


class ProvisioningError(PipewrightError):
    """Raised when an execution environment cannot be created or used."""

    def __init__(
        self,
        message: str,
        image: Optional[str] = None,
        error_code: str = "PROVISIONING_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if image:
            enriched_details["image"] = image

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.image = image


# =============================================================================
# Missing Artifact
# =============================================================================
# Raised by the dependency resolver BEFORE the job's environment is
# provisioned, so a job with an unmet dependency never starts.
# =============================================================================
class MissingArtifactError(PipewrightError):
    """Raised when a job depends on a job that did not succeed in this Run.

    Attributes:
        job_name: The job that cannot start.
        dependency: The dependency that did not succeed.
    """

    def __init__(
        self,
        message: str,
        job_name: str,
        dependency: str,
        error_code: str = "MISSING_ARTIFACT",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["job_name"] = job_name
        enriched_details["dependency"] = dependency

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.job_name = job_name
        self.dependency = dependency


# =============================================================================
# Artifact Store Errors
# =============================================================================
# All keyed by (run_id, job_name, path), the artifact store's address.
# =============================================================================
class ArtifactError(PipewrightError):
    """Base class for artifact store errors."""

    def __init__(
        self,
        message: str,
        run_id: str,
        job_name: str,
        path: str,
        error_code: str = "ARTIFACT_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details.update({"run_id": run_id, "job_name": job_name, "path": path})

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.run_id = run_id
        self.job_name = job_name
        self.path = path


class ArtifactNotFoundError(ArtifactError):
    """No artifact was ever stored under the requested key."""

    def __init__(self, run_id: str, job_name: str, path: str) -> None:
        super().__init__(
            message=f"Artifact '{path}' of job '{job_name}' not found in run {run_id}",
            run_id=run_id,
            job_name=job_name,
            path=path,
            error_code="ARTIFACT_NOT_FOUND",
        )


class ArtifactExpiredError(ArtifactError):
    """The artifact existed but its retention window has elapsed."""

    def __init__(self, run_id: str, job_name: str, path: str, expired_at: str) -> None:
        super().__init__(
            message=(
                f"Artifact '{path}' of job '{job_name}' in run {run_id} "
                f"expired at {expired_at}"
            ),
            run_id=run_id,
            job_name=job_name,
            path=path,
            error_code="ARTIFACT_EXPIRED",
            details={"expired_at": expired_at},
        )


class ArtifactExistsError(ArtifactError):
    """A second put() was attempted for an already published key."""

    def __init__(self, run_id: str, job_name: str, path: str) -> None:
        super().__init__(
            message=(
                f"Artifact '{path}' of job '{job_name}' in run {run_id} "
                f"is already published"
            ),
            run_id=run_id,
            job_name=job_name,
            path=path,
            error_code="ARTIFACT_EXISTS",
        )


# =============================================================================
# Registry Error
# =============================================================================
class RegistryError(PipewrightError):
    """Raised when logging in to or pushing to a container registry fails.

    Example:
        >>> raise RegistryError(
        ...     message="docker push exited with status 1",
        ...     image_ref="registry.example.com/frontend:latest",
        ...     error_code="PUSH_FAILED",
        ... )
    """

    def __init__(
        self,
        message: str,
        image_ref: Optional[str] = None,
        error_code: str = "REGISTRY_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if image_ref:
            enriched_details["image_ref"] = image_ref

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.image_ref = image_ref
