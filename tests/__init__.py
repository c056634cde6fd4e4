"""Test suite for cellsieve.

Test organization:
- fixtures/: Synthetic count matrices and blob embeddings
- unit/: Unit tests for metrics, policies, clustering, pipeline and CLI

Run tests with:
    pytest tests/
    pytest tests/unit/ -v --tb=short
"""
