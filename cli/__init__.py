"""CLI package for the Keyboard agent

This package provides the command-line interface for running the
approval channel, signing in to providers and managing the connection key.
"""

from cli.cli_app import KeyboardAgentCLI
from cli.main import main

__all__ = [
    "KeyboardAgentCLI",
    "main",
]
