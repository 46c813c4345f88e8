"""
pipewright.infrastructure.environments - Isolated Execution Environments
==========================================================================

Every job runs in its own execution environment, selected by the job's
image reference. The environment is a black box to the rest of Pipewright:
the job runner only needs to provision it, run command strings in it, move
files in and out, and tear it down.

    ┌──────────────┐  provision()     ┌──────────────────────────┐
    │  JobRunner   │ ───────────────→ │  ExecutionEnvironment    │
    │              │  write_file()    │                          │
    │              │  execute(line)   │  LocalEnvironment        │
    │              │  collect(path)   │   (temp dir + /bin/sh)   │
    │              │  teardown()      │  DockerEnvironment       │
    └──────────────┘                  │   (container per job)    │
                                      └──────────────────────────┘

Script lines stay opaque shell strings; each one is handed to the shell
unchanged and judged only by its exit status.

Usage:
    >>> async with create_environment(config.runner, "node:20", "run-1-build") as env:
    ...     result = await env.execute("npm ci", env={"CI": "true"})
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from pipewright.core.config import RunnerConfig
from pipewright.core.exceptions import ProvisioningError
from pipewright.core.models import normalize_artifact_path


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()

# Host variables a local job inherits. Everything else comes from the Run.
_INHERITED_HOST_VARIABLES = ("PATH", "HOME", "LANG", "LC_ALL", "TMPDIR", "DOCKER_HOST")


class CommandResult(BaseModel):
    """Exit status and combined stdout/stderr of one command."""

    exit_code: int = Field(description="Process exit status")
    output: str = Field(default="", description="Combined stdout and stderr")

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def _read_tree(base: Path, relative: str) -> dict[str, bytes]:
    """Read a file, or every file below a directory, keyed by relative path."""
    target = base / relative
    if target.is_file():
        return {relative: target.read_bytes()}
    if target.is_dir():
        return {
            file.relative_to(base).as_posix(): file.read_bytes()
            for file in sorted(target.rglob("*"))
            if file.is_file()
        }
    raise FileNotFoundError(relative)


# =============================================================================
# Abstract Base Class
# =============================================================================
class ExecutionEnvironment(ABC):
    """An isolated place to run one job.

    Implementations are single-use: provision, use, tear down. They can be
    used as async context managers, which provision on enter and always tear
    down on exit.

    Attributes:
        image: The image reference the environment was created from.
        name: A unique name, used for containers and temp dirs.
    """

    def __init__(self, image: str, name: str, shell: str = "/bin/sh") -> None:
        self.image = image
        self.name = name
        self.shell = shell
        self._provisioned = False

    @property
    def provisioned(self) -> bool:
        return self._provisioned

    @abstractmethod
    async def provision(self) -> None:
        """Create the environment.

        Raises:
            ProvisioningError: If the environment cannot be created.
        """

    @abstractmethod
    async def execute(
        self,
        command: str,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run one command string through the shell.

        Raises:
            asyncio.TimeoutError: If the command outlives ``timeout``.
        """

    @abstractmethod
    async def write_file(self, path: str, data: bytes) -> None:
        """Place a file at a workspace-relative path."""

    @abstractmethod
    async def collect(self, path: str) -> dict[str, bytes]:
        """Read a workspace file or directory tree.

        Returns:
            Mapping of workspace-relative file path → content.

        Raises:
            FileNotFoundError: If nothing exists at ``path``.
        """

    @abstractmethod
    async def teardown(self) -> None:
        """Destroy the environment. Safe to call more than once."""

    async def __aenter__(self) -> ExecutionEnvironment:
        await self.provision()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.teardown()


# =============================================================================
# Local Environment
# =============================================================================
# A fresh temporary directory per job and the host shell. The image
# reference is recorded but not used: this executor trades isolation for
# zero dependencies, like a "shell" runner.
# =============================================================================
class LocalEnvironment(ExecutionEnvironment):
    """Run a job in a private temporary directory on this host."""

    def __init__(
        self,
        image: str,
        name: str,
        shell: str = "/bin/sh",
        workspace_root: Optional[str] = None,
    ) -> None:
        super().__init__(image=image, name=name, shell=shell)
        self._workspace_root = workspace_root
        self._workspace: Optional[Path] = None
        self._logger = logger.bind(component="local_environment", environment=name)

    @property
    def workspace(self) -> Path:
        if self._workspace is None:
            raise ProvisioningError(
                message=f"Environment {self.name} is not provisioned",
                image=self.image,
                error_code="NOT_PROVISIONED",
            )
        return self._workspace

    def _resolve(self, path: str) -> Path:
        return self.workspace / normalize_artifact_path(path)

    async def provision(self) -> None:
        if self._workspace_root:
            Path(self._workspace_root).mkdir(parents=True, exist_ok=True)
        try:
            workspace = await asyncio.to_thread(
                tempfile.mkdtemp, prefix=f"{self.name}-", dir=self._workspace_root
            )
        except OSError as e:
            raise ProvisioningError(
                message=f"Could not create workspace for {self.name}: {e}",
                image=self.image,
            ) from e
        self._workspace = Path(workspace)
        self._provisioned = True
        self._logger.debug("environment_provisioned", workspace=workspace)

    async def execute(
        self,
        command: str,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        process_env = {
            key: os.environ[key] for key in _INHERITED_HOST_VARIABLES if key in os.environ
        }
        process_env.update(env or {})

        try:
            process = await asyncio.create_subprocess_exec(
                self.shell,
                "-c",
                command,
                cwd=self.workspace,
                env=process_env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ProvisioningError(
                message=f"Could not start shell '{self.shell}': {e}",
                image=self.image,
                error_code="SHELL_UNAVAILABLE",
                details={"shell": self.shell},
            ) from e
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return CommandResult(
            exit_code=process.returncode,
            output=stdout.decode("utf-8", errors="replace"),
        )

    async def write_file(self, path: str, data: bytes) -> None:
        target = self._resolve(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)

    async def collect(self, path: str) -> dict[str, bytes]:
        return await asyncio.to_thread(_read_tree, self.workspace, normalize_artifact_path(path))

    async def teardown(self) -> None:
        if self._workspace is not None:
            await asyncio.to_thread(shutil.rmtree, self._workspace, True)
            self._logger.debug("environment_destroyed", workspace=str(self._workspace))
            self._workspace = None
        self._provisioned = False


# =============================================================================
# Docker Environment
# =============================================================================
# One long-lived container per job started from the job image; each script
# line is a `docker exec`. Files move in and out with `docker cp` through a
# host staging directory.
# =============================================================================
class DockerEnvironment(ExecutionEnvironment):
    """Run a job inside a dedicated container."""

    WORKDIR = "/workspace"

    def __init__(
        self,
        image: str,
        name: str,
        shell: str = "/bin/sh",
        docker: str = "docker",
    ) -> None:
        super().__init__(image=image, name=name, shell=shell)
        self._docker = docker
        self._container: Optional[str] = None
        self._staging: Optional[Path] = None
        self._logger = logger.bind(component="docker_environment", environment=name, image=image)

    async def _run_docker(
        self,
        *args: str,
        stdin: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        try:
            process = await asyncio.create_subprocess_exec(
                self._docker,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ProvisioningError(
                message=f"Could not run Docker CLI '{self._docker}': {e}",
                image=self.image,
                error_code="DOCKER_UNAVAILABLE",
            ) from e
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(stdin), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise
        return CommandResult(
            exit_code=process.returncode,
            output=stdout.decode("utf-8", errors="replace"),
        )

    @property
    def container(self) -> str:
        if self._container is None:
            raise ProvisioningError(
                message=f"Environment {self.name} is not provisioned",
                image=self.image,
                error_code="NOT_PROVISIONED",
            )
        return self._container

    async def provision(self) -> None:
        result = await self._run_docker(
            "run", "--detach", "--rm",
            "--name", self.name,
            "--workdir", self.WORKDIR,
            "--entrypoint", "tail",
            self.image,
            "-f", "/dev/null",
        )
        if not result.ok:
            raise ProvisioningError(
                message=f"Could not start container from {self.image}: {result.output.strip()}",
                image=self.image,
                details={"exit_code": result.exit_code},
            )
        self._container = result.output.strip().splitlines()[-1]
        self._staging = Path(await asyncio.to_thread(tempfile.mkdtemp, prefix=f"{self.name}-"))
        self._provisioned = True
        self._logger.debug("environment_provisioned", container=self._container)

    async def execute(
        self,
        command: str,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        args = ["exec", "--workdir", self.WORKDIR]
        for key, value in (env or {}).items():
            args.extend(["--env", f"{key}={value}"])
        args.extend([self.container, self.shell, "-c", command])
        return await self._run_docker(*args, timeout=timeout)

    async def write_file(self, path: str, data: bytes) -> None:
        relative = normalize_artifact_path(path)
        staged = self._staging / uuid.uuid4().hex
        await asyncio.to_thread(staged.write_bytes, data)

        target = f"{self.WORKDIR}/{relative}"
        parent = target.rsplit("/", 1)[0]
        mkdir = await self._run_docker("exec", self.container, "mkdir", "-p", parent)
        copy = await self._run_docker("cp", str(staged), f"{self.container}:{target}")
        if not (mkdir.ok and copy.ok):
            raise ProvisioningError(
                message=f"Could not copy {relative} into {self.name}: {copy.output.strip()}",
                image=self.image,
                error_code="COPY_FAILED",
            )

    async def collect(self, path: str) -> dict[str, bytes]:
        relative = normalize_artifact_path(path)
        export_root = self._staging / uuid.uuid4().hex
        destination = export_root / relative
        await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)

        result = await self._run_docker(
            "cp", f"{self.container}:{self.WORKDIR}/{relative}", str(destination)
        )
        if not result.ok:
            raise FileNotFoundError(relative)
        return await asyncio.to_thread(_read_tree, export_root, relative)

    async def teardown(self) -> None:
        if self._container is not None:
            result = await self._run_docker("rm", "--force", self._container)
            if not result.ok:
                self._logger.warning("container_remove_failed", output=result.output.strip())
            self._container = None
        if self._staging is not None:
            await asyncio.to_thread(shutil.rmtree, self._staging, True)
            self._staging = None
        self._provisioned = False


# =============================================================================
# Factory
# =============================================================================
EnvironmentFactory = Callable[[Optional[str], str], ExecutionEnvironment]


def create_environment(config: RunnerConfig, image: Optional[str], name: str) -> ExecutionEnvironment:
    """Create an execution environment based on runner configuration.

    Maps ``config.executor`` to a concrete implementation:
        - "local"  → LocalEnvironment
        - "docker" → DockerEnvironment

    Args:
        config: Runner configuration.
        image: The job's image reference (None = config.default_image).
        name: Unique environment name.

    Raises:
        ValueError: If the executor is not recognized.
    """
    image = image or config.default_image
    executor = config.executor.lower()

    if executor == "local":
        return LocalEnvironment(
            image=image,
            name=name,
            shell=config.shell,
            workspace_root=config.workspace_root,
        )
    if executor == "docker":
        return DockerEnvironment(image=image, name=name, shell=config.shell)

    raise ValueError(
        f"Unknown executor: '{executor}'. Available executors: 'local', 'docker'."
    )


def environment_factory(config: RunnerConfig) -> EnvironmentFactory:
    """Bind ``create_environment`` to a runner configuration."""

    def _factory(image: Optional[str], name: str) -> ExecutionEnvironment:
        return create_environment(config, image, name)

    return _factory
