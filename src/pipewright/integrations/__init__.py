"""
pipewright.integrations - External Service Integration Layer
==============================================================

Adapters for the external services a Run talks to. Each integration sits
behind an interface so implementations can be swapped (real → mock).

Sub-packages:
    registry/  - Container registry clients (docker CLI, Mock)
"""

__all__: list[str] = []
