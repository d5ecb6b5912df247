"""Closed-loop insulin delivery orchestrator."""

__version__ = "0.1.0"
