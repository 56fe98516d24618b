"""
Test fixtures for deterministic testing.

This module provides:
- FakeVerifier: identity tokens mapped to fixed identities
- FakeBudgetService: in-memory budgeting service behind httpx.MockTransport
"""

from .fakes import FakeBudgetService, FakeVerifier, default_category_groups

__all__ = ["FakeBudgetService", "FakeVerifier", "default_category_groups"]
