"""
pipewright.orchestration.pipeline_engine - Pipeline Run Execution
===================================================================

The Pipeline Engine turns a trigger event into a Run and drives it through
the stages of a pipeline, from start to finish.

Architecture Context:
    ┌─────────────────────────────────────────────────────────────────┐
    │                        Pipeline Engine                          │
    │                                                                 │
    │  Pipeline ──→ StageGraph ──→ Stage Loop ──→ RunState            │
    │                                                                 │
    │  Stage 1: build                                                 │
    │    └── build   ──→ [Resolver] ──→ [JobRunner] ──→ env #1        │
    │                                                                 │
    │  Stage 2: test                     (concurrent, bounded)        │
    │    ├── lint    ──→ [Resolver] ──→ [JobRunner] ──→ env #2        │
    │    └── unit    ──→ [Resolver] ──→ [JobRunner] ──→ env #3        │
    │                                                                 │
    │  Stage 3: deploy                                                │
    │    └── deploy  ──→ [TriggerGate] ── rejected ──→ SKIPPED        │
    └─────────────────────────────────────────────────────────────────┘

Run Execution Flow:
    1. ``run(pipeline, event)`` validates the pipeline into a StageGraph.
       A ValidationError propagates: no Run is created for a bad definition.
    2. A RunState is created in PENDING, archived, and moved to RUNNING.
    3. For each stage in declaration order:
       a. Jobs rejected by the TriggerGate are recorded as SKIPPED.
       b. The other jobs run concurrently, each in its own environment.
          A job with a same-stage dependency waits for that dependency.
       c. Dependencies are resolved BEFORE provisioning. A job whose
          dependency did not succeed fails with MISSING_ARTIFACT and never
          starts.
       d. Results are recorded in declaration order.
       e. If a required job failed, the running siblings still finish,
          every job of the later stages is recorded as BLOCKED, and the Run
          moves to FAILED.
    4. Otherwise the Run moves to SUCCEEDED.

Variables:
    Each job sees, from lowest to highest precedence: event variables
    (CI_COMMIT_REF_NAME, ...), pipeline variables, variables injected into
    the Run, then its own job variables. None of them is stored on the
    RunState.

Usage:
    >>> engine = PipelineEngine(runner, artifact_store, run_store, factory)
    >>> state = await engine.run(pipeline, TriggerEvent.branch("main"))
    >>> state.status
    <RunStatus.SUCCEEDED: 'succeeded'>
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from pipewright.core.enums import JobStatus, RunStatus
from pipewright.core.exceptions import ArtifactError, MissingArtifactError
from pipewright.core.models import Job, JobResult, Pipeline, TriggerEvent
from pipewright.core.state import RunState
from pipewright.infrastructure.artifact_store import ArtifactStore
from pipewright.infrastructure.environments import EnvironmentFactory
from pipewright.orchestration.dependency_resolver import DependencyResolver
from pipewright.orchestration.job_runner import JobRunner
from pipewright.orchestration.run_store import RunStore
from pipewright.orchestration.stage_graph import StageGraph
from pipewright.orchestration.trigger_gate import TriggerGate


# =============================================================================
# Logger Setup
# =============================================================================
logger = structlog.get_logger()

DEFAULT_RUN_RETENTION = timedelta(hours=168)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def environment_name(run_id: str, job_name: str) -> str:
    """Container-safe, per-Run unique environment name for a job."""
    slug = _UNSAFE_NAME_CHARS.sub("-", job_name).strip("-.") or "job"
    return f"{run_id}-{slug}"


class PipelineEngine:
    """Stage-by-stage pipeline execution engine.

    The engine holds no job-specific logic. It decides WHICH jobs run and
    WHEN; the JobRunner decides what running a job means.

    Attributes:
        _runner: Executes single jobs.
        _resolver: Resolves artifact dependencies before a job starts.
        _run_store: Archives every RunState snapshot.
        _environment_factory: Builds a fresh environment per job.
        _gate: Evaluates only/except rules.
        _max_parallel_jobs: Upper bound on concurrently running jobs.
        _run_retention: How long finished Runs are kept.
    """

    def __init__(
        self,
        runner: JobRunner,
        artifact_store: ArtifactStore,
        run_store: RunStore,
        environment_factory: EnvironmentFactory,
        trigger_gate: Optional[TriggerGate] = None,
        max_parallel_jobs: int = 4,
        run_retention: timedelta = DEFAULT_RUN_RETENTION,
    ) -> None:
        """Initialize the Pipeline Engine.

        Args:
            runner: The JobRunner executing individual jobs.
            artifact_store: Store the dependency resolver reads from.
            run_store: Archive for RunState snapshots.
            environment_factory: Callable (image, name) → ExecutionEnvironment.
            trigger_gate: Gate for only/except rules (default: TriggerGate()).
            max_parallel_jobs: Concurrency limit within a stage. Must be >= 1.
            run_retention: Retention window for finished Runs.
        """
        if max_parallel_jobs < 1:
            raise ValueError("max_parallel_jobs must be at least 1")

        self._runner = runner
        self._resolver = DependencyResolver(artifact_store)
        self._run_store = run_store
        self._environment_factory = environment_factory
        self._gate = trigger_gate or TriggerGate()
        self._max_parallel_jobs = max_parallel_jobs
        self._run_retention = run_retention
        self._logger = logger.bind(component="pipeline_engine")

    # =========================================================================
    # Main Entry Point
    # =========================================================================

    async def run(
        self,
        pipeline: Pipeline,
        event: TriggerEvent,
        variables: Optional[dict[str, str]] = None,
    ) -> RunState:
        """Execute ``pipeline`` for ``event``.

        Args:
            pipeline: The pipeline definition.
            event: The branch or tag event that triggered the Run.
            variables: Variables injected into this Run only (e.g. the
                target image name). They reach every job environment and
                the publish step but are never archived.

        Returns:
            The final RunState (SUCCEEDED or FAILED).

        Raises:
            ValidationError: If the pipeline definition is invalid. No Run
                is created in that case.
        """
        graph = StageGraph(pipeline)

        state = RunState(pipeline_name=pipeline.name, ref=event.ref, ref_kind=event.kind)
        await self._run_store.save_run(state)

        state = state.transition_to(RunStatus.RUNNING)
        await self._run_store.save_run(state)

        log = self._logger.bind(run_id=state.run_id, pipeline=pipeline.name, ref=event.ref)
        log.info("run_started", stages=graph.execution_order(), job_count=len(pipeline.jobs))

        run_variables = {
            **event.builtin_variables(),
            "CI_PIPELINE_NAME": pipeline.name,
            "CI_RUN_ID": state.run_id,
            **pipeline.variables,
            **(variables or {}),
        }

        try:
            failed_stage: Optional[str] = None
            for stage in graph.execution_order():
                if failed_stage is not None:
                    state = await self._block_stage(graph, stage, failed_stage, state)
                    continue

                state, stage_failed = await self._execute_stage(
                    graph, stage, state, event, run_variables
                )
                if stage_failed:
                    failed_stage = stage

            final_status = RunStatus.FAILED if failed_stage else RunStatus.SUCCEEDED
            state = self._finish(state, final_status)
            await self._run_store.save_run(state)

        except Exception as e:
            # Infrastructure failure outside any single job.
            error_entry = {
                "timestamp": _now().isoformat(),
                "error": str(e),
                "error_type": type(e).__name__,
            }
            state = state.model_copy(update={"error_log": list(state.error_log) + [error_entry]})
            if not state.is_terminal:
                state = self._finish(state, RunStatus.FAILED)
            await self._run_store.save_run(state)
            log.exception("run_aborted", error=str(e))
            return state

        log_method = log.info if state.status == RunStatus.SUCCEEDED else log.warning
        log_method(
            "run_finished",
            status=state.status.value,
            duration_seconds=state.duration_seconds,
            failed_jobs=[r.job_name for r in state.failed_jobs],
        )
        return state

    # =========================================================================
    # Stage Execution
    # =========================================================================

    async def _execute_stage(
        self,
        graph: StageGraph,
        stage: str,
        state: RunState,
        event: TriggerEvent,
        run_variables: dict[str, str],
    ) -> tuple[RunState, bool]:
        """Run every job of one stage.

        Returns:
            The updated state and whether a required job failed.
        """
        log = self._logger.bind(run_id=state.run_id, stage=stage)
        log.info("stage_starting")

        state = state.model_copy(update={"current_stage": stage})
        await self._run_store.save_run(state)
        stage_record: dict[str, Any] = {"stage": stage, "started_at": _now().isoformat()}

        jobs = graph.jobs_in(stage)
        results: dict[str, JobResult] = {}
        finished = {job.name: asyncio.Event() for job in jobs}
        semaphore = asyncio.Semaphore(self._max_parallel_jobs)

        runnable: list[Job] = []
        for job in jobs:
            if self._gate.allows(job, event):
                runnable.append(job)
            else:
                results[job.name] = JobResult(
                    job_name=job.name,
                    stage=stage,
                    status=JobStatus.SKIPPED,
                    error_message=f"Not triggered for ref '{event.ref}'",
                )
                finished[job.name].set()
                log.info("job_skipped", job=job.name, ref=event.ref)

        async def execute(job: Job) -> None:
            try:
                for dependency in graph.same_stage_dependencies(job):
                    await finished[dependency].wait()
                results[job.name] = await self._execute_job(
                    job, self._snapshot(state, results), semaphore, run_variables
                )
            except Exception as e:
                # The environment factory or a teardown raised.
                log.exception("job_crashed", job=job.name, error=str(e))
                results[job.name] = JobResult(
                    job_name=job.name,
                    stage=stage,
                    status=JobStatus.FAILED,
                    error_code="JOB_ERROR",
                    error_message=f"{type(e).__name__}: {e}",
                    finished_at=_now(),
                )
            finally:
                finished[job.name].set()

        await asyncio.gather(*(execute(job) for job in runnable))

        # Declaration order, independent of completion order.
        for job in jobs:
            result = results[job.name]
            state = state.with_job_result(result)
            if result.status == JobStatus.FAILED:
                state = state.model_copy(update={
                    "error_log": list(state.error_log) + [{
                        "timestamp": (result.finished_at or _now()).isoformat(),
                        "stage": stage,
                        "job": job.name,
                        "error_code": result.error_code,
                        "error": result.error_message,
                    }],
                })

        stage_failed = any(
            results[job.name].status == JobStatus.FAILED and job.required for job in jobs
        )
        if stage_failed:
            outcome = "failed"
        elif all(results[job.name].status == JobStatus.SKIPPED for job in jobs):
            outcome = "skipped"
        else:
            outcome = "succeeded"

        stage_record.update({
            "finished_at": _now().isoformat(),
            "result": outcome,
            "job_count": len(jobs),
        })
        state = state.model_copy(update={
            "stage_history": list(state.stage_history) + [stage_record],
        })
        await self._run_store.save_run(state)

        log.info("stage_completed", result=outcome)
        return state, stage_failed

    async def _execute_job(
        self,
        job: Job,
        snapshot: RunState,
        semaphore: asyncio.Semaphore,
        run_variables: dict[str, str],
    ) -> JobResult:
        """Resolve dependencies, then run the job in a fresh environment."""
        try:
            inputs = await self._resolver.resolve(snapshot, job)
        except (MissingArtifactError, ArtifactError) as e:
            self._logger.warning(
                "job_dependency_unresolved",
                run_id=snapshot.run_id,
                job=job.name,
                error_code=e.error_code,
                error=e.message,
            )
            return JobResult(
                job_name=job.name,
                stage=job.stage,
                status=JobStatus.FAILED,
                error_code=e.error_code,
                error_message=e.message,
                metadata={"details": e.details},
            )

        job_variables = {
            **run_variables,
            "CI_JOB_NAME": job.name,
            "CI_JOB_STAGE": job.stage,
        }
        async with semaphore:
            environment = self._environment_factory(
                job.image, environment_name(snapshot.run_id, job.name)
            )
            return await self._runner.run(
                job,
                environment,
                run_id=snapshot.run_id,
                inputs=inputs,
                variables=job_variables,
            )

    async def _block_stage(
        self,
        graph: StageGraph,
        stage: str,
        failed_stage: str,
        state: RunState,
    ) -> RunState:
        """Record every job of ``stage`` as BLOCKED by an earlier failure."""
        for job in graph.jobs_in(stage):
            state = state.with_job_result(JobResult(
                job_name=job.name,
                stage=stage,
                status=JobStatus.BLOCKED,
                error_message=f"Blocked by failure in stage '{failed_stage}'",
            ))
        state = state.model_copy(update={
            "stage_history": list(state.stage_history) + [{
                "stage": stage,
                "result": "blocked",
                "blocked_by": failed_stage,
                "job_count": len(graph.jobs_in(stage)),
            }],
        })
        await self._run_store.save_run(state)
        self._logger.info("stage_blocked", run_id=state.run_id, stage=stage, blocked_by=failed_stage)
        return state

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    @staticmethod
    def _snapshot(state: RunState, results: dict[str, JobResult]) -> RunState:
        """State including the results of the current stage so far."""
        for result in results.values():
            state = state.with_job_result(result)
        return state

    def _finish(self, state: RunState, status: RunStatus) -> RunState:
        state = state.transition_to(status)
        return state.model_copy(update={"expires_at": state.finished_at + self._run_retention})
