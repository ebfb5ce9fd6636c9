"""Integration tests for specialist-router."""
