"""Integration tests for the tiered deployment orchestrator.

Integration tests run complete orchestrations end to end against the
in-memory cluster, with a fake clock so timeouts elapse instantly.

Run with: pytest tests/integration/ -v -m integration
"""
