"""Registry for analysis agent definitions.

Loads agent definitions from YAML and provides lookup methods.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from src.executor.schemas import AgentKind

from .schemas import AgentDefinition, AgentSummary

logger = logging.getLogger(__name__)

DEFINITIONS_FILE = Path(__file__).parent / "definitions" / "agents.yaml"


class AgentRegistry:
    """Loads and serves agent definitions."""

    def __init__(self, definitions_file: Optional[Path] = None) -> None:
        self.definitions_file = definitions_file or DEFINITIONS_FILE
        self._agents: dict[AgentKind, AgentDefinition] = {}
        self._load_agents()

    def _load_agents(self) -> None:
        """Load agents from the YAML file."""
        if not self.definitions_file.exists():
            logger.warning(f"Agent definitions file not found: {self.definitions_file}")
            return

        with open(self.definitions_file) as f:
            data = yaml.safe_load(f) or {}

        for agent_data in data.get("agents", []):
            try:
                agent = AgentDefinition(**agent_data)
                self._agents[agent.agent_type] = agent
                logger.debug(f"Loaded agent: {agent.agent_type.value}")
            except Exception as e:
                logger.error(f"Failed to load agent definition: {e}")

        missing = set(AgentKind) - set(self._agents)
        if missing:
            logger.warning(
                f"No definition for agent kinds: {sorted(k.value for k in missing)}"
            )
        logger.info(f"Loaded {len(self._agents)} agent definitions")

    def get(self, agent_type: Any) -> Optional[AgentDefinition]:
        """Get an agent definition by kind (enum or string)."""
        try:
            return self._agents.get(AgentKind(agent_type))
        except ValueError:
            return None

    def display_name(self, agent_type: Any, fallback: str = "") -> str:
        """Display name of an agent, or the fallback when unknown."""
        agent = self.get(agent_type)
        return agent.name if agent else fallback

    def list_all(self) -> list[AgentDefinition]:
        """All definitions in declaration order."""
        return list(self._agents.values())

    def list_summaries(self) -> list[AgentSummary]:
        """Definitions without prompt text."""
        return [
            AgentSummary(
                agent_type=a.agent_type,
                name=a.name,
                description=a.description,
            )
            for a in self._agents.values()
        ]

    def count(self) -> int:
        return len(self._agents)


# Global registry instance
_registry: Optional[AgentRegistry] = None


def get_agent_registry() -> AgentRegistry:
    """Get the global agent registry instance."""
    global _registry
    if _registry is None:
        _registry = AgentRegistry()
    return _registry
