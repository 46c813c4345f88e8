"""
pipewright.integrations.registry - Container Registry Clients
===============================================================

Available Clients:
    - ContainerRegistry:  Abstract base class (login + push).
    - DockerCliRegistry:  Drives the docker CLI.
    - MockRegistry:       Records calls (for testing).

Usage:
    >>> from pipewright.integrations.registry import create_registry
    >>> registry = create_registry(config.registry)
"""

from pipewright.integrations.registry.base import ContainerRegistry, RegistryCredentials
from pipewright.integrations.registry.docker import DockerCliRegistry
from pipewright.integrations.registry.mock import MockRegistry
from pipewright.integrations.registry.factory import create_registry

__all__ = [
    "ContainerRegistry",
    "RegistryCredentials",
    "DockerCliRegistry",
    "MockRegistry",
    "create_registry",
]
