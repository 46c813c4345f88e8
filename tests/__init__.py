"""
Pipewright Test Suite
=====================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → Tests for pipewright.core (config, loader, models, state)
    ├── test_orchestration/ → Tests for pipewright.orchestration (graph, runner, engine)
    ├── test_infrastructure/→ Tests for pipewright.infrastructure (artifacts, environments)
    ├── test_integrations/  → Tests for pipewright.integrations (container registries)
    ├── test_integration/   → End-to-end tests with the local executor
    └── conftest.py         → Shared pytest fixtures

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_core/         # Run only core tests
    pytest --cov=pipewright         # Run with coverage report (needs pytest-cov)
"""
