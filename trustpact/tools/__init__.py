"""
Operational tools for TrustPact.

- admin_cli: Inspect and edit trust requests directly in the store
"""

from .admin_cli import AdminCLI, build_parser, main

__all__ = ["AdminCLI", "build_parser", "main"]
