"""
Shared Test Fixtures for Pipewright
=====================================

Reusable pytest fixtures for the whole suite, organized by layer:

    1. Configuration fixtures
    2. Infrastructure fixtures (fake clock, ArtifactStore, scripted environments)
    3. Integration fixtures (MockRegistry)
    4. Orchestration fixtures (RunStore, JobRunner, PipelineEngine)
    5. Pipeline definitions

The ScriptedEnvironment understands a handful of commands so orchestration
tests run without a shell:

    produce <path> <content>   write a workspace file
    require <path>             exit 1 unless the file exists
    fail [<code>]              exit with <code> (default 1)
    sleep <seconds>            wait, then succeed
    anything else              echo the command, exit 0
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from pydantic import SecretStr

from pipewright.core.config import PipewrightConfig, RunnerConfig
from pipewright.core.exceptions import ProvisioningError
from pipewright.core.loader import parse_pipeline
from pipewright.infrastructure.artifact_store import InMemoryArtifactStore
from pipewright.infrastructure.environments import CommandResult, ExecutionEnvironment
from pipewright.integrations.registry.base import RegistryCredentials
from pipewright.integrations.registry.mock import MockRegistry
from pipewright.orchestration.job_runner import JobRunner
from pipewright.orchestration.pipeline_engine import PipelineEngine
from pipewright.orchestration.publish import PublishStep
from pipewright.orchestration.run_store import InMemoryRunStore


# =============================================================================
# Test Doubles
# =============================================================================
class FakeClock:
    """Deterministic clock for retention tests."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class ScriptedEnvironment(ExecutionEnvironment):
    """In-memory environment interpreting a tiny command language."""

    def __init__(self, image: str, name: str, fail_provision: bool = False) -> None:
        super().__init__(image=image, name=name)
        self.files: dict[str, bytes] = {}
        self.executed: list[str] = []
        self.env_seen: list[dict[str, str]] = []
        self.torn_down = False
        self._fail_provision = fail_provision

    async def provision(self) -> None:
        if self._fail_provision:
            raise ProvisioningError(message=f"cannot pull {self.image}", image=self.image)
        self._provisioned = True

    async def execute(
        self,
        command: str,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        self.executed.append(command)
        self.env_seen.append(dict(env or {}))
        verb, _, rest = command.partition(" ")

        if verb == "produce":
            path, _, content = rest.partition(" ")
            self.files[path] = content.encode()
            return CommandResult(exit_code=0, output=f"wrote {path}\n")
        if verb == "require":
            if rest in self.files:
                return CommandResult(exit_code=0, output=f"found {rest}\n")
            return CommandResult(exit_code=1, output=f"missing {rest}\n")
        if verb == "fail":
            return CommandResult(exit_code=int(rest or 1), output="boom\n")
        if verb == "sleep":
            await asyncio.wait_for(asyncio.sleep(float(rest)), timeout=timeout)
            return CommandResult(exit_code=0)
        return CommandResult(exit_code=0, output=f"{command}\n")

    async def write_file(self, path: str, data: bytes) -> None:
        self.files[path] = data

    async def collect(self, path: str) -> dict[str, bytes]:
        found = {
            name: data for name, data in self.files.items()
            if name == path or name.startswith(path.rstrip("/") + "/")
        }
        if not found:
            raise FileNotFoundError(path)
        return found

    async def teardown(self) -> None:
        self.torn_down = True
        self._provisioned = False


class ScriptedEnvironmentFactory:
    """EnvironmentFactory recording every environment it creates."""

    def __init__(self, fail_provision_for: tuple[str, ...] = ()) -> None:
        self.created: list[ScriptedEnvironment] = []
        self._fail_provision_for = fail_provision_for

    def __call__(self, image: Optional[str], name: str) -> ScriptedEnvironment:
        image = image or "alpine:3.20"
        env = ScriptedEnvironment(image, name, fail_provision=image in self._fail_provision_for)
        self.created.append(env)
        return env

    def for_job(self, job_name: str) -> Optional[ScriptedEnvironment]:
        for env in self.created:
            if env.name.endswith(f"-{job_name}"):
                return env
        return None


# =============================================================================
# Configuration
# =============================================================================

@pytest.fixture
def config():
    """Pipewright configuration with defaults."""
    return PipewrightConfig()


# =============================================================================
# Infrastructure
# =============================================================================

@pytest.fixture
def clock():
    """Fake clock starting at 2026-01-01 12:00 UTC."""
    return FakeClock()


@pytest.fixture
def artifact_store(clock):
    """Fresh InMemoryArtifactStore on the fake clock."""
    return InMemoryArtifactStore(clock=clock)


@pytest.fixture
def environments():
    """Scripted environment factory."""
    return ScriptedEnvironmentFactory()


@pytest.fixture
def broken_environments():
    """Scripted factory whose "missing:image" environments fail to provision."""
    return ScriptedEnvironmentFactory(fail_provision_for=("missing:image",))


# =============================================================================
# Integrations
# =============================================================================

@pytest.fixture
def mock_registry():
    """MockRegistry accepting user 'ci' with password 's3cret'."""
    return MockRegistry(expected_username="ci", expected_password="s3cret")


@pytest.fixture
def credentials():
    return RegistryCredentials(
        username="ci",
        password=SecretStr("s3cret"),
        registry="registry.example.com",
    )


# =============================================================================
# Orchestration
# =============================================================================

@pytest.fixture
async def run_store():
    """Connected InMemoryRunStore."""
    store = InMemoryRunStore()
    await store.connect()
    return store


@pytest.fixture
def runner(artifact_store, mock_registry, credentials):
    """JobRunner publishing to the mock registry."""
    return JobRunner(
        artifact_store=artifact_store,
        publisher=PublishStep(mock_registry, credentials),
        config=RunnerConfig(job_timeout_seconds=30),
    )


@pytest.fixture
def engine(runner, artifact_store, run_store, environments):
    """PipelineEngine wired to scripted environments."""
    return PipelineEngine(
        runner=runner,
        artifact_store=artifact_store,
        run_store=run_store,
        environment_factory=environments,
    )


# =============================================================================
# Pipeline Definitions
# =============================================================================

FRONTEND_DEFINITION = {
    "stages": ["build", "test", "deploy"],
    "build": {
        "stage": "build",
        "image": "node:20",
        "script": ["npm ci", "produce frontend/index.html <html></html>"],
        "artifacts": {"paths": ["frontend"], "expire_in": "1 hour"},
    },
    "test": {
        "stage": "test",
        "dependencies": ["build"],
        "script": ["require frontend/index.html"],
    },
    "deploy": {
        "stage": "deploy",
        "image": "docker:24",
        "script": ["docker build -t $IMAGE_NAME ."],
        "publish": {"image": "$IMAGE_NAME"},
        "only": ["main"],
    },
}


@pytest.fixture
def frontend_definition():
    """Raw build → test → deploy definition (mutable copy)."""
    return copy.deepcopy(FRONTEND_DEFINITION)


@pytest.fixture
def frontend_pipeline(frontend_definition):
    """Parsed build → test → deploy pipeline."""
    return parse_pipeline(frontend_definition, name="frontend")
