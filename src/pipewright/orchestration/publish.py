"""
pipewright.orchestration.publish - Registry Publish Step
==========================================================

Pushes the image a job built to the container registry, after the job's
script succeeded:

    publish: {image: $IMAGE_NAME}
                  │
                  │  expand with the Run's variables
                  ↓
    registry.example.com/frontend:1.4.0
                  │
                  │  login(credentials) → push(image_ref)
                  ↓
    ContainerRegistry

Credentials are handed to the step when it is built. Nothing is read from the
process environment while a Run executes.
"""

from __future__ import annotations

import re
from string import Template
from typing import Optional

import structlog

from pipewright.core.exceptions import RegistryError
from pipewright.core.models import PublishSpec
from pipewright.integrations.registry.base import ContainerRegistry, RegistryCredentials


logger = structlog.get_logger()

_UNRESOLVED = re.compile(r"\$(\{[A-Za-z_][A-Za-z0-9_]*\}|[A-Za-z_][A-Za-z0-9_]*)")


def expand_image_ref(template: str, variables: dict[str, str]) -> str:
    """Expand ``$NAME`` / ``${NAME}`` in an image reference.

    Raises:
        RegistryError: If a variable is undefined or the result is empty.
    """
    image_ref = Template(template).safe_substitute(variables).strip()
    unresolved = _UNRESOLVED.findall(image_ref)
    if unresolved:
        names = sorted({name.strip("{}") for name in unresolved})
        raise RegistryError(
            message=f"Image reference uses undefined variables: {', '.join(names)}",
            image_ref=template,
            error_code="UNRESOLVED_IMAGE",
        )
    if not image_ref:
        raise RegistryError(
            message="Image reference is empty after variable expansion",
            image_ref=template,
            error_code="UNRESOLVED_IMAGE",
        )
    return image_ref


class PublishStep:
    """Logs in to the registry and pushes an image.

    Attributes:
        _registry: The registry client.
        _credentials: Explicit credentials. None pushes without logging in,
            relying on whatever authentication the registry client already has.
    """

    def __init__(
        self,
        registry: ContainerRegistry,
        credentials: Optional[RegistryCredentials] = None,
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._logger = logger.bind(component="publish_step")

    async def publish(self, spec: PublishSpec, variables: dict[str, str]) -> str:
        """Expand, authenticate, push.

        Returns:
            The pushed image reference.

        Raises:
            RegistryError: If expansion, login, or push fails.
        """
        image_ref = expand_image_ref(spec.image, variables)

        if self._credentials is not None:
            await self._registry.login(
                self._credentials.username,
                self._credentials.password.get_secret_value(),
                self._credentials.registry,
            )
        else:
            self._logger.debug("registry_login_skipped", image_ref=image_ref)

        await self._registry.push(image_ref)
        self._logger.info("image_published", image_ref=image_ref)
        return image_ref
