"""
pipewright.orchestration - Orchestration Layer
================================================

The components that turn a pipeline definition and a trigger event into a
Run. They sit above the infrastructure layer (artifact store, execution
environments) and below the Pipewright facade.

Components:
    - StageGraph:          Validated stage order and job dependencies
    - TriggerGate:         only/except ref rules
    - DependencyResolver:  Artifact dependencies, resolved before a job starts
    - JobRunner:           Executes one job in one environment
    - PublishStep:         Pushes a built image to the registry
    - RunStore:            Archive of RunState snapshots
    - PipelineEngine:      Drives a Run stage by stage
"""

from pipewright.orchestration.dependency_resolver import DependencyResolver
from pipewright.orchestration.job_runner import JobRunner
from pipewright.orchestration.pipeline_engine import PipelineEngine
from pipewright.orchestration.publish import PublishStep, expand_image_ref
from pipewright.orchestration.run_store import InMemoryRunStore, RunStore
from pipewright.orchestration.stage_graph import StageGraph
from pipewright.orchestration.trigger_gate import TriggerGate, pattern_matches

__all__ = [
    "StageGraph",
    "TriggerGate",
    "pattern_matches",
    "DependencyResolver",
    "JobRunner",
    "PublishStep",
    "expand_image_ref",
    "RunStore",
    "InMemoryRunStore",
    "PipelineEngine",
]
