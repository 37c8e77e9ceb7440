"""Streaming progress and milestone extraction."""

from agent_worker.progress.milestones import MilestoneExtractor, format_filename

__all__ = ["MilestoneExtractor", "format_filename"]
