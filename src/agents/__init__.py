"""Analysis agent definitions module."""

from src.agents.registry import AgentRegistry, get_agent_registry
from src.agents.schemas import AgentDefinition, AgentSummary

__all__ = [
    "AgentDefinition",
    "AgentRegistry",
    "AgentSummary",
    "get_agent_registry",
]
