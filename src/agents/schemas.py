"""Agent definitions: what each analysis agent is and how it is prompted."""

from pydantic import BaseModel, Field

from src.executor.schemas import AgentKind


class AgentDefinition(BaseModel):
    """One analysis agent a workflow node can run."""

    agent_type: AgentKind
    name: str = Field(..., description="Display name shown in the editor")
    description: str = ""
    system_prompt: str = Field(
        default="",
        description="System prompt used by the LLM-backed executor",
    )
    output_fields: list[str] = Field(
        default_factory=list,
        description="Top-level JSON fields the agent is expected to return",
    )


class AgentSummary(BaseModel):
    """Listing entry without the prompt text."""

    agent_type: AgentKind
    name: str
    description: str = ""
