"""Test suite for celltype-gate.

Test organization:
- fixtures/: Mock data generators, stub scorers and clusterers
- unit/: Unit tests for individual modules, the engine and the CLI

Run tests with:
    pytest tests/
    pytest tests/unit/
    pytest tests/ -v --tb=short
"""
