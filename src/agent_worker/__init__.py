"""Supervised worker that runs an external coding agent for remote jobs."""

__version__ = "0.1.0"
