"""Iterative runner for external AI-assistant command-line backends."""

__version__ = "0.1.0"
