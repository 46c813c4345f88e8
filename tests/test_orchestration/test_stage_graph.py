"""
Tests for pipewright.orchestration.stage_graph
================================================

What's Being Tested:
    - Queries on a valid graph (order, jobs per stage, later stages)
    - Every validation rule and its error code
    - Same-stage dependencies are allowed unless they form a cycle
"""

import pytest

from pipewright.core.exceptions import ValidationError
from pipewright.core.models import Job, Pipeline
from pipewright.orchestration.stage_graph import StageGraph


def _job(name: str, stage: str, dependencies=None) -> Job:
    return Job(name=name, stage=stage, script=[f"echo {name}"], dependencies=dependencies)


def _pipeline(stages: list[str], *jobs: Job) -> Pipeline:
    return Pipeline(name="p", stages=stages, jobs=list(jobs))


def _error_code(pipeline: Pipeline) -> str:
    with pytest.raises(ValidationError) as exc_info:
        StageGraph(pipeline)
    return exc_info.value.error_code


# =============================================================================
# Queries
# =============================================================================
class TestQueries:

    def test_frontend_graph(self, frontend_pipeline) -> None:
        graph = StageGraph(frontend_pipeline)

        assert graph.execution_order() == ["build", "test", "deploy"]
        assert [j.name for j in graph.jobs_in("test")] == ["test"]
        assert graph.job("deploy").stage == "deploy"
        assert graph.stage_index("deploy") == 2
        assert graph.later_stages("build") == ["test", "deploy"]
        assert graph.later_stages("deploy") == []

    def test_jobs_keep_declaration_order(self) -> None:
        graph = StageGraph(_pipeline(
            ["test"],
            _job("unit", "test"),
            _job("lint", "test"),
            _job("e2e", "test"),
        ))
        assert [j.name for j in graph.jobs_in("test")] == ["unit", "lint", "e2e"]

    def test_same_stage_dependencies(self) -> None:
        graph = StageGraph(_pipeline(
            ["build", "test"],
            _job("build", "build"),
            _job("lint", "test"),
            _job("unit", "test", ["build", "lint"]),
        ))
        assert graph.same_stage_dependencies(graph.job("unit")) == ["lint"]
        assert graph.same_stage_dependencies(graph.job("lint")) == []

    def test_unknown_stage_lookup(self, frontend_pipeline) -> None:
        with pytest.raises(KeyError):
            StageGraph(frontend_pipeline).jobs_in("release")


# =============================================================================
# Validation Rules
# =============================================================================
class TestValidation:

    def test_duplicate_stage(self) -> None:
        assert _error_code(_pipeline(["build", "build"], _job("a", "build"))) == "DUPLICATE_STAGE"

    def test_duplicate_job(self) -> None:
        pipeline = _pipeline(["build"], _job("a", "build"), _job("a", "build"))
        assert _error_code(pipeline) == "DUPLICATE_JOB"

    def test_unknown_stage(self) -> None:
        assert _error_code(_pipeline(["build"], _job("a", "deploy"))) == "UNKNOWN_STAGE"

    def test_empty_stage(self) -> None:
        pipeline = _pipeline(["build", "test"], _job("a", "build"))
        assert _error_code(pipeline) == "EMPTY_STAGE"

    def test_self_dependency(self) -> None:
        assert _error_code(_pipeline(["build"], _job("a", "build", ["a"]))) == "SELF_DEPENDENCY"

    def test_unknown_dependency(self) -> None:
        pipeline = _pipeline(["build"], _job("a", "build", ["ghost"]))
        assert _error_code(pipeline) == "UNKNOWN_DEPENDENCY"

    def test_forward_dependency(self) -> None:
        pipeline = _pipeline(
            ["build", "deploy"],
            _job("build", "build", ["deploy"]),
            _job("deploy", "deploy"),
        )
        with pytest.raises(ValidationError) as exc_info:
            StageGraph(pipeline)
        assert exc_info.value.error_code == "FORWARD_DEPENDENCY"
        assert exc_info.value.location == "build.dependencies"

    def test_cycle_within_stage(self) -> None:
        pipeline = _pipeline(
            ["test"],
            _job("a", "test", ["c"]),
            _job("b", "test", ["a"]),
            _job("c", "test", ["b"]),
            _job("d", "test"),
        )
        with pytest.raises(ValidationError) as exc_info:
            StageGraph(pipeline)
        assert exc_info.value.error_code == "DEPENDENCY_CYCLE"
        assert exc_info.value.details["jobs"] == ["a", "b", "c"]

    def test_same_stage_chain_is_valid(self) -> None:
        graph = StageGraph(_pipeline(
            ["test"],
            _job("c", "test", ["b"]),
            _job("b", "test", ["a"]),
            _job("a", "test"),
        ))
        assert len(graph.jobs_in("test")) == 3
