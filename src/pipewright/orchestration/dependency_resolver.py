"""
pipewright.orchestration.dependency_resolver - Artifact Dependency Resolution
===============================================================================

Before a job's environment is provisioned, the resolver gathers the artifacts
of every job it depends on:

    RunState ──→ dependency 'build' succeeded? ──no──→ MissingArtifactError
                          │                            (job never starts)
                         yes
                          ↓
    ArtifactStore ──→ every artifact 'build' published ──expired──→ ArtifactExpiredError
                          │
                          ↓
                    list[Artifact]  (written into the new environment at
                                     the paths they were produced from)
"""

from __future__ import annotations

import structlog

from pipewright.core.enums import JobStatus
from pipewright.core.exceptions import ArtifactNotFoundError, MissingArtifactError
from pipewright.core.models import Job
from pipewright.core.state import RunState
from pipewright.infrastructure.artifact_store import Artifact, ArtifactStore


logger = structlog.get_logger()


class DependencyResolver:
    """Resolves a job's declared dependencies to artifacts of the same Run."""

    def __init__(self, artifact_store: ArtifactStore) -> None:
        self._artifact_store = artifact_store
        self._logger = logger.bind(component="dependency_resolver")

    async def resolve(self, run: RunState, job: Job) -> list[Artifact]:
        """Fetch every artifact ``job`` depends on.

        Args:
            run: The current Run, holding results of finished jobs.
            job: The job about to start.

        Returns:
            Artifacts of all dependencies, in dependency then path order.

        Raises:
            MissingArtifactError: If a dependency did not succeed in this Run.
            ArtifactExpiredError: If a dependency's artifact has expired.
            ArtifactNotFoundError: If a recorded artifact is gone from the store.
        """
        resolved: list[Artifact] = []

        for dependency in job.depends_on:
            status = run.status_of(dependency)
            if status != JobStatus.SUCCEEDED:
                state = status.value if status else "not run"
                raise MissingArtifactError(
                    message=(
                        f"Job '{job.name}' needs artifacts of '{dependency}', "
                        f"which did not succeed ({state})"
                    ),
                    job_name=job.name,
                    dependency=dependency,
                    details={"dependency_status": state},
                )

            live = {
                artifact.path: artifact
                for artifact in await self._artifact_store.list_for_job(run.run_id, dependency)
            }
            for path in run.job_results[dependency].artifacts:
                if path not in live:
                    # Raises ArtifactExpiredError or ArtifactNotFoundError.
                    await self._artifact_store.get(run.run_id, dependency, path)
                    raise ArtifactNotFoundError(run.run_id, dependency, path)
                resolved.append(live[path])

        if resolved:
            self._logger.debug(
                "dependencies_resolved",
                run_id=run.run_id,
                job=job.name,
                artifact_count=len(resolved),
            )
        return resolved
