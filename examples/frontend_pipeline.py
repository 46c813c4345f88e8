"""
Frontend Pipeline Example - Run a Pipeline Through the Facade
===============================================================

This example runs ``examples/frontend.yml`` twice with the local executor
and a mock registry:

    1. On a feature branch: build and test run, deploy is skipped.
    2. On main: deploy runs too and the image is pushed.

Nothing outside a temporary directory is touched, so it is safe to run
anywhere with a POSIX shell.

Usage:
    python examples/frontend_pipeline.py
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from pipewright import Pipewright
from pipewright.core.config import ArtifactConfig, PipewrightConfig, RegistryConfig, RunnerConfig
from pipewright.core.models import TriggerEvent
from pipewright.core.state import RunState
from pipewright.log import configure_logging

DEFINITION = Path(__file__).with_name("frontend.yml")


def print_run(state: RunState) -> None:
    print(f"Run {state.run_id} on {state.ref}: {state.status.value}")
    print("-" * 60)
    for name, result in state.job_results.items():
        extra = f"  → {result.image_ref}" if result.image_ref else ""
        print(f"  {name:<8} [{result.stage:<6}] {result.status.value}{extra}")
    print()


async def main() -> None:
    """Run the frontend pipeline for a feature branch and for main."""
    configure_logging("WARNING")

    with tempfile.TemporaryDirectory() as scratch:
        config = PipewrightConfig(
            runner=RunnerConfig(executor="local", workspace_root=f"{scratch}/workspaces"),
            artifacts=ArtifactConfig(backend="filesystem", root=f"{scratch}/artifacts"),
            registry=RegistryConfig(provider="mock", username="ci", password="s3cret"),
        )

        async with Pipewright(config) as pw:
            feature = await pw.run_pipeline(
                DEFINITION, TriggerEvent.branch("feature/login", sha="5f1c2d0")
            )
            print_run(feature)

            release = await pw.run_pipeline(
                DEFINITION,
                TriggerEvent.branch("main", sha="9ab3e71"),
                variables={"IMAGE_NAME": "registry.example.com/frontend:9ab3e71"},
            )
            print_run(release)

            bundle = await pw.get_artifact(release.run_id, "build", "frontend/index.html")
            print(f"Published bundle: {bundle.decode().strip()}")
            print(f"Pushed images   : {pw.registry.pushed}")


if __name__ == "__main__":
    asyncio.run(main())
