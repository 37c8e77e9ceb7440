"""Input, path and environment guards for the agent spawn boundary."""

from agent_worker.guards.environment import EnvironmentGuard
from agent_worker.guards.paths import PathGuard
from agent_worker.guards.prompts import PromptGuard

__all__ = [
    "EnvironmentGuard",
    "PathGuard",
    "PromptGuard",
]
