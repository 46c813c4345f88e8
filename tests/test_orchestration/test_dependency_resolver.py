"""
Tests for pipewright.orchestration.dependency_resolver
========================================================

What's Being Tested:
    - Artifacts of succeeded dependencies are resolved in dependency order
    - A dependency that failed, was skipped or never ran raises
      MissingArtifactError
    - Expired artifacts raise ArtifactExpiredError instead of stale bytes
    - Artifacts recorded on the result but missing from the store
"""

from datetime import timedelta

import pytest

from pipewright.core.enums import JobStatus
from pipewright.core.exceptions import (
    ArtifactExpiredError,
    ArtifactNotFoundError,
    MissingArtifactError,
)
from pipewright.core.models import Job, JobResult
from pipewright.core.state import RunState
from pipewright.orchestration.dependency_resolver import DependencyResolver


def _job(dependencies=None) -> Job:
    return Job(name="test", stage="test", script=["make test"], dependencies=dependencies)


def _run_with(*results: JobResult) -> RunState:
    state = RunState(run_id="run-1", pipeline_name="frontend", ref="main")
    for result in results:
        state = state.with_job_result(result)
    return state


def _result(name: str, status=JobStatus.SUCCEEDED, artifacts=()) -> JobResult:
    return JobResult(job_name=name, stage="build", status=status, artifacts=list(artifacts))


class TestResolve:

    async def test_no_dependencies(self, artifact_store) -> None:
        resolver = DependencyResolver(artifact_store)
        assert await resolver.resolve(_run_with(), _job()) == []

    async def test_resolves_in_dependency_order(self, artifact_store) -> None:
        await artifact_store.put("run-1", "build", "frontend/index.html", b"<html>")
        await artifact_store.put("run-1", "build", "frontend/app.js", b"js")
        await artifact_store.put("run-1", "assets", "img/logo.png", b"png")
        run = _run_with(
            _result("build", artifacts=["frontend/app.js", "frontend/index.html"]),
            _result("assets", artifacts=["img/logo.png"]),
        )

        artifacts = await DependencyResolver(artifact_store).resolve(run, _job(["assets", "build"]))

        assert [(a.job_name, a.path) for a in artifacts] == [
            ("assets", "img/logo.png"),
            ("build", "frontend/app.js"),
            ("build", "frontend/index.html"),
        ]
        assert artifacts[2].content == b"<html>"

    async def test_only_recorded_artifacts_are_resolved(self, artifact_store) -> None:
        await artifact_store.put("run-1", "build", "dist/a.js", b"a")
        await artifact_store.put("run-1", "build", "dist/b.js", b"b")
        run = _run_with(_result("build", artifacts=["dist/a.js"]))

        artifacts = await DependencyResolver(artifact_store).resolve(run, _job(["build"]))
        assert [a.path for a in artifacts] == ["dist/a.js"]

    @pytest.mark.parametrize("status", [JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.BLOCKED])
    async def test_unsuccessful_dependency(self, artifact_store, status) -> None:
        run = _run_with(_result("build", status=status))

        with pytest.raises(MissingArtifactError) as exc_info:
            await DependencyResolver(artifact_store).resolve(run, _job(["build"]))

        assert exc_info.value.error_code == "MISSING_ARTIFACT"
        assert exc_info.value.dependency == "build"
        assert exc_info.value.details["dependency_status"] == status.value

    async def test_dependency_that_never_ran(self, artifact_store) -> None:
        with pytest.raises(MissingArtifactError) as exc_info:
            await DependencyResolver(artifact_store).resolve(_run_with(), _job(["build"]))
        assert exc_info.value.details["dependency_status"] == "not run"

    async def test_expired_artifact(self, artifact_store, clock) -> None:
        await artifact_store.put("run-1", "build", "dist/app.js", b"js", retention=timedelta(hours=1))
        run = _run_with(_result("build", artifacts=["dist/app.js"]))

        clock.advance(timedelta(hours=2))

        with pytest.raises(ArtifactExpiredError):
            await DependencyResolver(artifact_store).resolve(run, _job(["build"]))

    async def test_recorded_artifact_missing_from_store(self, artifact_store) -> None:
        run = _run_with(_result("build", artifacts=["dist/app.js"]))
        with pytest.raises(ArtifactNotFoundError):
            await DependencyResolver(artifact_store).resolve(run, _job(["build"]))
