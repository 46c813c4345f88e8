"""
pipewright.integrations.registry.docker - Docker CLI Registry Client
======================================================================

Talks to a registry through the local docker CLI:

    docker login --username <user> --password-stdin [<registry>]
    docker push <image_ref>

The password goes over stdin, so it never appears in the process list.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from pipewright.core.exceptions import RegistryError
from pipewright.integrations.registry.base import ContainerRegistry


logger = structlog.get_logger()


class DockerCliRegistry(ContainerRegistry):
    """Registry client backed by the docker CLI.

    Attributes:
        _docker: Path or name of the docker executable.
        _timeout: Seconds allowed for a single login or push.
    """

    def __init__(self, docker: str = "docker", timeout: float = 600) -> None:
        self._docker = docker
        self._timeout = timeout
        self._logger = logger.bind(component="docker_cli_registry")

    async def _run(self, *args: str, stdin: Optional[bytes] = None) -> tuple[int, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                self._docker,
                *args,
                stdin=asyncio.subprocess.PIPE if stdin is not None else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError as e:
            raise RegistryError(
                message=f"Docker CLI '{self._docker}' not found",
                error_code="DOCKER_UNAVAILABLE",
            ) from e

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(stdin), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise RegistryError(
                message=f"docker {args[0]} timed out after {self._timeout}s",
                error_code="REGISTRY_TIMEOUT",
            ) from e
        return process.returncode, stdout.decode("utf-8", errors="replace").strip()

    async def login(self, username: str, password: str, registry: Optional[str] = None) -> None:
        args = ["login", "--username", username, "--password-stdin"]
        if registry:
            args.append(registry)

        code, output = await self._run(*args, stdin=password.encode())
        if code != 0:
            raise RegistryError(
                message=f"docker login failed: {output}",
                error_code="LOGIN_FAILED",
                details={"registry": registry, "exit_code": code},
            )
        self._logger.info("registry_login", registry=registry, username=username)

    async def push(self, image_ref: str) -> None:
        code, output = await self._run("push", image_ref)
        if code != 0:
            raise RegistryError(
                message=f"docker push failed: {output}",
                image_ref=image_ref,
                error_code="PUSH_FAILED",
                details={"exit_code": code},
            )
        self._logger.info("image_pushed", image_ref=image_ref)
