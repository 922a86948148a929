"""Command line interface for the command gate."""

from agentic_gate.cli.app import main

__all__ = ["main"]
