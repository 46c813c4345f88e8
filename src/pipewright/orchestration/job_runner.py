"""
pipewright.orchestration.job_runner - Single Job Execution
============================================================

The JobRunner executes ONE job in ONE freshly provisioned environment and
turns whatever happens into a JobResult. It never raises for job-level
failures: a failing line, a timeout, a provisioning or registry error all
become a FAILED result. Errors from outside the Pipewright hierarchy are
wrapped as JOB_ERROR.

Job Lifecycle:
    ┌────────────┐   ┌──────────────┐   ┌─────────────────────────┐
    │ provision  │──→│ write inputs │──→│ before_script + script  │
    └────────────┘   └──────────────┘   │ line by line, stop at   │
                                        │ first non-zero exit     │
                                        └───────────┬─────────────┘
                                                    │
                                      ┌─────────────▼─────────────┐
                                      │ after_script (always)     │
                                      └─────────────┬─────────────┘
                                          success?  │
                              ┌─────────────────────▼──────────────────┐
                              │ collect artifacts → ArtifactStore.put  │
                              │ publish image     → PublishStep        │
                              └─────────────────────┬──────────────────┘
                                                    │
                                      ┌─────────────▼─────────────┐
                                      │ teardown (always)         │
                                      └───────────────────────────┘

Logs:
    Every executed line is recorded as ``$ <line>`` followed by its output.
    For a failed job the logs therefore end with the output of the line that
    failed. after_script output is kept apart, in ``metadata["after_script"]``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from pipewright.core.config import RunnerConfig
from pipewright.core.enums import JobStatus
from pipewright.core.exceptions import ExecutionError, PipewrightError
from pipewright.core.models import Job, JobResult
from pipewright.infrastructure.artifact_store import Artifact, ArtifactStore
from pipewright.infrastructure.environments import ExecutionEnvironment
from pipewright.orchestration.publish import PublishStep


logger = structlog.get_logger()

# Upper bound for after_script, which runs even when the job timed out.
AFTER_SCRIPT_TIMEOUT_SECONDS = 300


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _output_lines(output: str) -> list[str]:
    return output.rstrip("\n").splitlines() if output else []


def _unexpected(job: Job, error: Exception) -> ExecutionError:
    """Wrap an error from outside the domain hierarchy so the job still fails cleanly."""
    return ExecutionError(
        message=f"{type(error).__name__}: {error}",
        job_name=job.name,
        error_code="JOB_ERROR",
        details={"error_type": type(error).__name__},
    )


class JobRunner:
    """Executes jobs in isolated environments.

    Attributes:
        _artifact_store: Where successful jobs publish their artifacts.
        _publisher: Pushes images for jobs that declare ``publish``.
        _config: Runner settings (default timeout).

    Example:
        >>> runner = JobRunner(InMemoryArtifactStore())
        >>> env = LocalEnvironment(image="alpine:3.20", name="run-1-build")
        >>> result = await runner.run(job, env, run_id="run-1")
        >>> result.status
        <JobStatus.SUCCEEDED: 'succeeded'>
    """

    def __init__(
        self,
        artifact_store: ArtifactStore,
        publisher: Optional[PublishStep] = None,
        config: Optional[RunnerConfig] = None,
    ) -> None:
        self._artifact_store = artifact_store
        self._publisher = publisher
        self._config = config or RunnerConfig()
        self._logger = logger.bind(component="job_runner")

    # =========================================================================
    # Main Entry Point
    # =========================================================================

    async def run(
        self,
        job: Job,
        environment: ExecutionEnvironment,
        *,
        run_id: str,
        inputs: Optional[list[Artifact]] = None,
        variables: Optional[dict[str, str]] = None,
    ) -> JobResult:
        """Run ``job`` in ``environment`` and report the outcome.

        Args:
            job: The job to execute.
            environment: A fresh, not yet provisioned environment. It is
                always torn down before this method returns.
            run_id: The Run this job belongs to (artifact key prefix).
            inputs: Resolved dependency artifacts to place in the workspace.
            variables: Run-level variables. Job variables are layered on top.

        Returns:
            A terminal JobResult (SUCCEEDED or FAILED).
        """
        env = {**(variables or {}), **job.variables}
        timeout = job.timeout_seconds or self._config.job_timeout_seconds
        log = self._logger.bind(run_id=run_id, job=job.name, stage=job.stage)

        started_at = _now()
        logs: list[str] = []
        after_logs: list[str] = []
        published: list[str] = []
        image_ref: Optional[str] = None
        failure: Optional[PipewrightError] = None

        log.info("job_started", image=environment.image)
        try:
            try:
                await environment.provision()
                for artifact in inputs or []:
                    await environment.write_file(artifact.path, artifact.content)
                await self._run_script(job, environment, env, timeout, logs)
            except PipewrightError as e:
                failure = e
            except Exception as e:
                failure = _unexpected(job, e)

            if environment.provisioned and job.after_script:
                after_logs = await self._run_after_script(job, environment, env, log)

            if failure is None:
                try:
                    published = await self._publish_artifacts(job, environment, run_id, log)
                    if job.publish is not None:
                        image_ref = await self._publish_image(job, env)
                except PipewrightError as e:
                    failure = e
                except Exception as e:
                    failure = _unexpected(job, e)
        finally:
            await environment.teardown()

        metadata = {"after_script": after_logs} if job.after_script else {}

        if failure is not None:
            log.warning(
                "job_failed",
                error_code=failure.error_code,
                error=failure.message,
            )
            return JobResult(
                job_name=job.name,
                stage=job.stage,
                status=JobStatus.FAILED,
                logs=logs,
                exit_code=getattr(failure, "exit_code", None),
                failed_line=getattr(failure, "line", None),
                error_code=failure.error_code,
                error_message=failure.message,
                artifacts=published,
                started_at=started_at,
                metadata=metadata,
            )

        log.info("job_succeeded", artifact_count=len(published), image_ref=image_ref)
        return JobResult(
            job_name=job.name,
            stage=job.stage,
            status=JobStatus.SUCCEEDED,
            logs=logs,
            exit_code=0,
            artifacts=published,
            image_ref=image_ref,
            started_at=started_at,
            metadata=metadata,
        )

    # =========================================================================
    # Script Execution
    # =========================================================================

    async def _run_script(
        self,
        job: Job,
        environment: ExecutionEnvironment,
        env: dict[str, str],
        timeout: float,
        logs: list[str],
    ) -> None:
        """Run before_script and script, stopping at the first failure.

        Raises:
            ExecutionError: On a non-zero exit ("SCRIPT_FAILED") or when the
                job outlives its timeout ("JOB_TIMEOUT").
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        for line in [*job.before_script, *job.script]:
            logs.append(f"$ {line}")
            remaining = deadline - loop.time()
            try:
                if remaining <= 0:
                    raise asyncio.TimeoutError
                result = await environment.execute(line, env=env, timeout=remaining)
            except asyncio.TimeoutError as e:
                logs.append(f"Job timed out after {timeout}s")
                raise ExecutionError(
                    message=f"Job exceeded its timeout of {timeout}s",
                    job_name=job.name,
                    line=line,
                    error_code="JOB_TIMEOUT",
                    details={"timeout_seconds": timeout},
                ) from e

            logs.extend(_output_lines(result.output))
            if not result.ok:
                raise ExecutionError(
                    message=f"Command exited with status {result.exit_code}: {line}",
                    job_name=job.name,
                    line=line,
                    exit_code=result.exit_code,
                )

    async def _run_after_script(
        self,
        job: Job,
        environment: ExecutionEnvironment,
        env: dict[str, str],
        log: Any,
    ) -> list[str]:
        """Run after_script. Failures are logged and never raised."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + AFTER_SCRIPT_TIMEOUT_SECONDS
        lines: list[str] = []

        for line in job.after_script:
            lines.append(f"$ {line}")
            try:
                result = await environment.execute(
                    line, env=env, timeout=max(deadline - loop.time(), 0.001)
                )
            except asyncio.TimeoutError:
                lines.append("after_script timed out")
                log.warning("after_script_timeout", line=line)
                break
            except PipewrightError as e:
                log.warning("after_script_error", line=line, error=e.message)
                break
            lines.extend(_output_lines(result.output))
            if not result.ok:
                log.warning("after_script_failed", line=line, exit_code=result.exit_code)
                break
        return lines

    # =========================================================================
    # Outputs
    # =========================================================================

    async def _publish_artifacts(
        self,
        job: Job,
        environment: ExecutionEnvironment,
        run_id: str,
        log: Any,
    ) -> list[str]:
        """Copy declared artifact paths from the workspace into the store."""
        if job.artifacts is None:
            return []

        published: list[str] = []
        for declared in job.artifacts.paths:
            try:
                files = await environment.collect(declared)
            except FileNotFoundError:
                log.warning("artifact_path_missing", path=declared)
                continue

            for path, data in files.items():
                if path in published:
                    continue
                await self._artifact_store.put(
                    run_id,
                    job.name,
                    path,
                    data,
                    retention=job.artifacts.expire_in,
                    keep_forever=job.artifacts.keep_forever,
                )
                published.append(path)

        return published

    async def _publish_image(self, job: Job, env: dict[str, str]) -> str:
        if self._publisher is None:
            raise ExecutionError(
                message=f"Job '{job.name}' publishes an image but no registry is configured",
                job_name=job.name,
                error_code="NO_REGISTRY",
            )
        return await self._publisher.publish(job.publish, env)
