"""
TrustPact Test Suite.

This package contains:
- unit/: Unit tests (in-memory store, temporary SQLite files)
- integration/: HTTP gateway and admin CLI against real stores
"""
