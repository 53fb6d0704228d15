"""Agent definition API routes."""

from fastapi import APIRouter, HTTPException

from src.agents.registry import get_agent_registry
from src.agents.schemas import AgentDefinition, AgentSummary

router = APIRouter(prefix="/agents", tags=["agents"])


@router.get("", response_model=list[AgentSummary])
async def list_agents() -> list[AgentSummary]:
    """List the analysis agents a node can run."""
    return get_agent_registry().list_summaries()


@router.get("/{agent_type}", response_model=AgentDefinition)
async def get_agent(agent_type: str) -> AgentDefinition:
    """Full agent definition including its system prompt."""
    agent = get_agent_registry().get(agent_type)
    if agent is None:
        raise HTTPException(status_code=404, detail=f"Agent not found: {agent_type}")
    return agent
