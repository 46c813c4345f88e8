"""
pipewright.integrations.registry.factory - Registry Client Factory
====================================================================

Maps ``RegistryConfig.provider`` to a concrete ContainerRegistry.

Usage:
    >>> registry = create_registry(RegistryConfig(provider="mock"))
    >>> type(registry)  # MockRegistry
"""

from __future__ import annotations

from pipewright.core.config import RegistryConfig
from pipewright.integrations.registry.base import ContainerRegistry


def create_registry(config: RegistryConfig) -> ContainerRegistry:
    """Create a registry client based on configuration.

        - "docker" → DockerCliRegistry
        - "mock"   → MockRegistry

    Raises:
        ValueError: If the provider name is not recognized.
    """
    provider_name = config.provider.lower()

    if provider_name == "docker":
        from pipewright.integrations.registry.docker import DockerCliRegistry
        return DockerCliRegistry()

    if provider_name == "mock":
        from pipewright.integrations.registry.mock import MockRegistry
        return MockRegistry()

    raise ValueError(
        f"Unknown registry provider: '{provider_name}'. "
        f"Available providers: 'docker', 'mock'."
    )
