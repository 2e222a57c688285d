"""Unit tests for the tiered deployment orchestrator.

Unit tests verify individual components in isolation using mocks, a fake
clock and the in-memory cluster. No real cluster or CLI is required.

Run with: pytest tests/unit/ -v
"""
