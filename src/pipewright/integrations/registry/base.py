"""
pipewright.integrations.registry.base - Abstract Container Registry Client
============================================================================

The contract every registry client implements. The registry itself is an
external collaborator: Pipewright only logs in and pushes an image that a
job already built.

    ┌───────────────┐   login(user, password)   ┌──────────────────────┐
    │  PublishStep  │ ────────────────────────→ │  ContainerRegistry   │
    │               │   push(image_ref)         │  (abstract)          │
    └───────────────┘                           └──────────┬───────────┘
                                                           │
                                              ┌────────────┴──────────┐
                                         ┌────▼─────┐        ┌────────▼───────┐
                                         │  Mock    │        │  DockerCli     │
                                         │ Registry │        │  Registry      │
                                         └──────────┘        └────────────────┘
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, Field, SecretStr

from pipewright.core.config import RegistryConfig


class RegistryCredentials(BaseModel):
    """Explicit registry credentials handed to the publish step.

    Built from RegistryConfig (or directly by callers); never looked up
    from the process environment while a Run executes.

    Example:
        >>> creds = RegistryCredentials(
        ...     username="ci",
        ...     password=SecretStr("s3cret"),
        ...     registry="registry.example.com:5050",
        ... )
    """

    username: str = Field(min_length=1, description="Registry user name")
    password: SecretStr = Field(description="Registry password or token")
    registry: Optional[str] = Field(
        default=None,
        description="Registry host (None = implied by the image reference)",
    )

    @classmethod
    def from_config(cls, config: RegistryConfig) -> Optional[RegistryCredentials]:
        """Build credentials from configuration, None when incomplete."""
        if not config.username or config.password is None:
            return None
        return cls(username=config.username, password=config.password, registry=config.url)


class ContainerRegistry(ABC):
    """Abstract registry client.

    Subclasses implement ``login`` and ``push``. Both raise RegistryError on
    failure.
    """

    @abstractmethod
    async def login(self, username: str, password: str, registry: Optional[str] = None) -> None:
        """Authenticate against ``registry``.

        Raises:
            RegistryError: If authentication fails.
        """

    @abstractmethod
    async def push(self, image_ref: str) -> None:
        """Push a locally available image.

        Raises:
            RegistryError: If the push fails.
        """
