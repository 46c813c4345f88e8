"""
pipewright.integrations.registry.mock - Mock Registry for Testing
===================================================================

Records login and push calls instead of talking to a registry.

Features:
    - **Call History**: every login/push is recorded for assertions.
    - **Error Simulation**: fail logins or pushes on demand.
    - **Credential Check**: optionally accept only one user/password pair.

Example:
    >>> registry = MockRegistry()
    >>> await registry.login("ci", "s3cret", "registry.example.com")
    >>> await registry.push("registry.example.com/frontend:latest")
    >>> registry.pushed
    ['registry.example.com/frontend:latest']
"""

from __future__ import annotations

from typing import Any, Optional

import structlog

from pipewright.core.exceptions import RegistryError
from pipewright.integrations.registry.base import ContainerRegistry


logger = structlog.get_logger()


class MockRegistry(ContainerRegistry):
    """In-process stand-in for a container registry.

    Attributes:
        _calls: Ordered record of ("login" | "push", arguments) entries.
        _expected: Accepted (username, password) pair, None accepts anyone.
        _fail_login / _fail_push: Error simulation switches.
    """

    def __init__(
        self,
        expected_username: Optional[str] = None,
        expected_password: Optional[str] = None,
    ) -> None:
        self._calls: list[dict[str, Any]] = []
        self._expected = (
            (expected_username, expected_password) if expected_username is not None else None
        )
        self._logged_in = False
        self._fail_login = False
        self._fail_push = False
        self._logger = logger.bind(component="mock_registry")

    # =========================================================================
    # Inspection
    # =========================================================================

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    @property
    def pushed(self) -> list[str]:
        """Image references pushed so far, in order."""
        return [call["image_ref"] for call in self._calls if call["action"] == "push"]

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    # =========================================================================
    # Error Simulation
    # =========================================================================

    def fail_login(self, should_fail: bool = True) -> None:
        self._fail_login = should_fail

    def fail_push(self, should_fail: bool = True) -> None:
        self._fail_push = should_fail

    # =========================================================================
    # ContainerRegistry API
    # =========================================================================

    async def login(self, username: str, password: str, registry: Optional[str] = None) -> None:
        self._calls.append({"action": "login", "username": username, "registry": registry})

        rejected = self._expected is not None and self._expected != (username, password)
        if self._fail_login or rejected:
            raise RegistryError(
                message=f"Mock login rejected for {username}",
                error_code="LOGIN_FAILED",
                details={"registry": registry},
            )
        self._logged_in = True
        self._logger.debug("mock_login", username=username, registry=registry)

    async def push(self, image_ref: str) -> None:
        if not self._logged_in:
            raise RegistryError(
                message="Push attempted before login",
                image_ref=image_ref,
                error_code="NOT_AUTHENTICATED",
            )
        if self._fail_push:
            raise RegistryError(
                message="Mock push failure",
                image_ref=image_ref,
                error_code="PUSH_FAILED",
            )
        self._calls.append({"action": "push", "image_ref": image_ref})
        self._logger.debug("mock_push", image_ref=image_ref)
