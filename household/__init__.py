# Household Ledger - core library
"""
Permission-aware household expense ledger with remote budget sync.

Subpackages:
- security: roles, credential vault, identity, grants, access planner
- remote: budgeting service client, credential store, mirrors, dispatcher
- observability: logging, request context, metrics
"""

__version__ = "1.0.0"
