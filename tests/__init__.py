"""
CoachFlow Test Suite
====================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → coachflow.core (config, state, models)
    ├── test_tools/         → coachflow.tools (retry, breaker, executor, chain)
    ├── test_orchestration/ → coachflow.orchestration (events, tasks, state)
    ├── test_infrastructure/→ coachflow.infrastructure (state storage)
    ├── test_integrations/  → coachflow.integrations (AI providers)
    ├── test_integration/   → End-to-end scenarios
    └── conftest.py         → Shared pytest fixtures

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_tools/        # Run only tool-layer tests
    pytest --cov=coachflow          # Run with coverage report
"""
