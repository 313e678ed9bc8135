"""
VaultSync - GitHub synchronization for local note vaults.

This package keeps a directory of notes in a git repository and syncs it with
a GitHub remote, exposed through the Model Context Protocol (MCP).
"""

__version__ = "1.0.0"
__author__ = "VaultSync Team"
__description__ = "GitHub synchronization for local note vaults"

from .server import main

__all__ = ["main"]
