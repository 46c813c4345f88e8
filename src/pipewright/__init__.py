"""
Pipewright - Minimal Self-Hosted CI Pipeline Runner
=====================================================

Pipewright executes staged pipelines: each job runs in its own isolated
environment, publishes artifacts for later jobs of the same Run, and may
push a built image to a container registry.

    stage: build  →  stage: test  →  stage: deploy
    (compile,        (consume         (push image,
     publish dist)    dist)            main only)

Architecture Layers (top to bottom):
    1. Facade               - Pipewright
    2. Orchestration Layer  - PipelineEngine, JobRunner, StageGraph, TriggerGate
    3. Infrastructure Layer - ArtifactStore, ExecutionEnvironment
    4. Integration Layer    - Container registry clients

Quick Start:
    >>> from pipewright import Pipewright
    >>> async with Pipewright() as pw:
    ...     state = await pw.run_pipeline(".pipewright.yml", TriggerEvent.branch("main"))
"""

# =============================================================================
# Package Version
# =============================================================================
__version__ = "0.1.0"

from pipewright.facade import Pipewright

__all__ = ["Pipewright", "__version__"]
