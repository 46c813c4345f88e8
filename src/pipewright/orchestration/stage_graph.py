"""
pipewright.orchestration.stage_graph - Stage Graph Validation
===============================================================

The StageGraph is the validated shape of a Pipeline: stages in declaration
order, the jobs of each stage, and the dependency edges between jobs.

    stages:   build ──────→ test ──────→ deploy
                │             │             │
    jobs:     build         lint          deploy
                            unit ←─ lint    (needs: unit)
                            (needs: build)

Rules (checked once, before any Run exists):
    - stage names are unique, every job names a declared stage
    - job names are unique, every declared stage has at least one job
    - a dependency names another existing job
    - a dependency never points at a LATER stage
    - dependencies inside one stage form no cycle

A dependency on an earlier stage is satisfied by stage ordering alone. A
dependency inside the same stage orders the two jobs: the dependent job waits
for its dependency to finish.
"""

from __future__ import annotations

from collections import Counter

import structlog

from pipewright.core.exceptions import ValidationError
from pipewright.core.models import Job, Pipeline


logger = structlog.get_logger()


class StageGraph:
    """Validated stage and job structure of a pipeline.

    Attributes:
        pipeline: The definition this graph was built from.

    Example:
        >>> graph = StageGraph(pipeline)
        >>> graph.execution_order()
        ['build', 'test', 'deploy']
        >>> [job.name for job in graph.jobs_in("test")]
        ['lint', 'unit']

    Raises:
        ValidationError: From the constructor, if the definition breaks a rule.
    """

    def __init__(self, pipeline: Pipeline) -> None:
        self.pipeline = pipeline
        self._stage_index: dict[str, int] = {}
        self._jobs: dict[str, Job] = {}
        self._by_stage: dict[str, list[Job]] = {}
        self._logger = logger.bind(component="stage_graph", pipeline=pipeline.name)

        self._check_stages()
        self._check_jobs()
        self._check_dependencies()
        self._check_cycles()

        self._logger.debug(
            "stage_graph_built",
            stages=self.execution_order(),
            job_count=len(self._jobs),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def execution_order(self) -> list[str]:
        """Stage names in the order they run, which is declaration order."""
        return list(self.pipeline.stages)

    def jobs_in(self, stage: str) -> list[Job]:
        """Jobs of ``stage`` in declaration order.

        Raises:
            KeyError: If ``stage`` is not declared.
        """
        return list(self._by_stage[stage])

    def job(self, name: str) -> Job:
        return self._jobs[name]

    def stage_index(self, stage: str) -> int:
        return self._stage_index[stage]

    def later_stages(self, stage: str) -> list[str]:
        """Stages that run after ``stage``."""
        return self.pipeline.stages[self._stage_index[stage] + 1:]

    def same_stage_dependencies(self, job: Job) -> list[str]:
        """Dependencies of ``job`` that live in its own stage."""
        return [dep for dep in job.depends_on if self._jobs[dep].stage == job.stage]

    # =========================================================================
    # Validation
    # =========================================================================

    def _check_stages(self) -> None:
        duplicates = [name for name, n in Counter(self.pipeline.stages).items() if n > 1]
        if duplicates:
            raise ValidationError(
                message=f"Stage declared more than once: {', '.join(duplicates)}",
                location="stages",
                error_code="DUPLICATE_STAGE",
            )
        self._stage_index = {name: i for i, name in enumerate(self.pipeline.stages)}
        self._by_stage = {name: [] for name in self.pipeline.stages}

    def _check_jobs(self) -> None:
        for job in self.pipeline.jobs:
            if job.name in self._jobs:
                raise ValidationError(
                    message=f"Job name '{job.name}' is used more than once",
                    location=job.name,
                    error_code="DUPLICATE_JOB",
                )
            if job.stage not in self._stage_index:
                raise ValidationError(
                    message=f"Job '{job.name}' uses undeclared stage '{job.stage}'",
                    location=f"{job.name}.stage",
                    error_code="UNKNOWN_STAGE",
                    details={"declared_stages": list(self.pipeline.stages)},
                )
            self._jobs[job.name] = job
            self._by_stage[job.stage].append(job)

        empty = [stage for stage, jobs in self._by_stage.items() if not jobs]
        if empty:
            raise ValidationError(
                message=f"Stage without jobs: {', '.join(empty)}",
                location="stages",
                error_code="EMPTY_STAGE",
            )

    def _check_dependencies(self) -> None:
        for job in self.pipeline.jobs:
            for dep in job.depends_on:
                location = f"{job.name}.dependencies"
                if dep == job.name:
                    raise ValidationError(
                        message=f"Job '{job.name}' depends on itself",
                        location=location,
                        error_code="SELF_DEPENDENCY",
                    )
                target = self._jobs.get(dep)
                if target is None:
                    raise ValidationError(
                        message=f"Job '{job.name}' depends on unknown job '{dep}'",
                        location=location,
                        error_code="UNKNOWN_DEPENDENCY",
                    )
                if self._stage_index[target.stage] > self._stage_index[job.stage]:
                    raise ValidationError(
                        message=(
                            f"Job '{job.name}' (stage '{job.stage}') depends on "
                            f"'{dep}' from later stage '{target.stage}'"
                        ),
                        location=location,
                        error_code="FORWARD_DEPENDENCY",
                    )

    def _check_cycles(self) -> None:
        # Kahn's algorithm over same-stage edges, one stage at a time.
        for stage, jobs in self._by_stage.items():
            pending = {job.name: set(self.same_stage_dependencies(job)) for job in jobs}
            ready = [name for name, deps in pending.items() if not deps]
            while ready:
                done = ready.pop()
                del pending[done]
                for name, deps in pending.items():
                    if done in deps:
                        deps.discard(done)
                        if not deps:
                            ready.append(name)
            if pending:
                cycle = sorted(pending)
                raise ValidationError(
                    message=f"Dependency cycle in stage '{stage}': {', '.join(cycle)}",
                    location=f"{cycle[0]}.dependencies",
                    error_code="DEPENDENCY_CYCLE",
                    details={"stage": stage, "jobs": cycle},
                )
