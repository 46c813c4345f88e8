"""
Tests for pipewright.facade
=============================

These tests verify the Pipewright facade wires the layers together and
exposes a usable lifecycle.

What's Being Tested:
    - Construction from configuration and component injection
    - initialize / shutdown lifecycle and the async context manager
    - Running a pipeline from a Pipeline object or a definition file
    - Run and artifact queries
    - Retention purge across artifacts and Runs
"""

from datetime import timedelta

import pytest
import yaml

from pipewright import Pipewright
from pipewright.core.config import PipewrightConfig, RunnerConfig
from pipewright.core.enums import JobStatus, RunStatus
from pipewright.core.exceptions import ArtifactExpiredError, ValidationError
from pipewright.core.models import TriggerEvent
from pipewright.infrastructure.artifact_store import InMemoryArtifactStore
from pipewright.integrations.registry.docker import DockerCliRegistry
from pipewright.orchestration.run_store import InMemoryRunStore

IMAGE = {"IMAGE_NAME": "registry.example.com/frontend:1.0"}


@pytest.fixture
def pw(artifact_store, mock_registry, credentials, environments):
    """Facade with fake clock, mock registry and scripted environments."""
    return Pipewright(
        artifact_store=artifact_store,
        registry=mock_registry,
        credentials=credentials,
        environments=environments,
    )


@pytest.fixture
def definition_file(tmp_path, frontend_definition):
    path = tmp_path / "frontend.yml"
    path.write_text(yaml.safe_dump(frontend_definition, sort_keys=False))
    return path


# =============================================================================
# Construction
# =============================================================================
class TestConstruction:

    def test_defaults_from_config(self) -> None:
        pw = Pipewright(PipewrightConfig())

        assert isinstance(pw.artifact_store, InMemoryArtifactStore)
        assert isinstance(pw.run_store, InMemoryRunStore)
        assert isinstance(pw.registry, DockerCliRegistry)
        assert pw.engine is not None
        assert not pw.is_initialized

    def test_injected_components(self, pw, artifact_store, mock_registry) -> None:
        assert pw.artifact_store is artifact_store
        assert pw.registry is mock_registry

    def test_repr(self) -> None:
        pw = Pipewright(PipewrightConfig(runner=RunnerConfig(executor="docker")))
        assert repr(pw) == "Pipewright(initialized=False, executor='docker')"


# =============================================================================
# Lifecycle
# =============================================================================
class TestLifecycle:

    async def test_initialize_and_shutdown(self, pw) -> None:
        await pw.initialize()
        await pw.initialize()
        assert pw.is_initialized

        await pw.shutdown()
        await pw.shutdown()
        assert not pw.is_initialized

    async def test_context_manager(self, pw) -> None:
        async with pw as facade:
            assert facade.is_initialized
        assert not pw.is_initialized

    async def test_run_requires_initialization(self, pw, frontend_pipeline) -> None:
        with pytest.raises(RuntimeError, match="not been initialized"):
            await pw.run_pipeline(frontend_pipeline, TriggerEvent.branch("main"))


# =============================================================================
# Pipelines
# =============================================================================
class TestPipelines:

    async def test_run_from_file(self, pw, definition_file, mock_registry) -> None:
        async with pw:
            state = await pw.run_pipeline(definition_file, TriggerEvent.branch("main"), IMAGE)

            assert state.pipeline_name == "frontend"
            assert state.status == RunStatus.SUCCEEDED
            assert mock_registry.pushed == [IMAGE["IMAGE_NAME"]]
            assert await pw.get_run(state.run_id) == state

    async def test_tag_event(self, pw, frontend_pipeline) -> None:
        async with pw:
            state = await pw.run_pipeline(frontend_pipeline, TriggerEvent.tag("v1.0.0"))

        assert state.status == RunStatus.SUCCEEDED
        assert state.status_of("deploy") == JobStatus.SKIPPED

    def test_validate(self, pw, definition_file) -> None:
        graph = pw.validate(definition_file)
        assert graph.execution_order() == ["build", "test", "deploy"]

    def test_validate_rejects_forward_dependency(self, pw, frontend_pipeline) -> None:
        build = frontend_pipeline.get_job("build").model_copy(update={"dependencies": ["deploy"]})
        broken = frontend_pipeline.model_copy(
            update={"jobs": [build, *frontend_pipeline.jobs[1:]]}
        )
        with pytest.raises(ValidationError):
            pw.validate(broken)

    def test_load_pipeline(self, definition_file) -> None:
        assert Pipewright.load_pipeline(definition_file).job_names == ["build", "test", "deploy"]


# =============================================================================
# Runs, Artifacts and Retention
# =============================================================================
class TestRunsAndArtifacts:

    async def test_list_runs(self, pw, frontend_pipeline) -> None:
        async with pw:
            first = await pw.run_pipeline(frontend_pipeline, TriggerEvent.branch("dev"))
            second = await pw.run_pipeline(frontend_pipeline, TriggerEvent.branch("dev"))

            runs = await pw.list_runs("frontend")
            assert [r.run_id for r in runs] == [first.run_id, second.run_id]
            assert await pw.list_runs("backend") == []

    async def test_get_artifact(self, pw, frontend_pipeline) -> None:
        async with pw:
            state = await pw.run_pipeline(frontend_pipeline, TriggerEvent.branch("dev"))
            content = await pw.get_artifact(state.run_id, "build", "frontend/index.html")

        assert content == b"<html></html>"

    async def test_purge_expired(self, pw, frontend_pipeline, clock) -> None:
        async with pw:
            state = await pw.run_pipeline(frontend_pipeline, TriggerEvent.branch("dev"))

            clock.current = state.expires_at + timedelta(seconds=1)
            counts = await pw.purge_expired()

            assert counts == {"artifacts": 1, "runs": 1}
            assert await pw.get_run(state.run_id) is None
            with pytest.raises(ArtifactExpiredError):
                await pw.get_artifact(state.run_id, "build", "frontend/index.html")
