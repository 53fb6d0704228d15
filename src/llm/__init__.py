"""Claude access for the analysis agents."""

from src.llm.client import (
    ModelReply,
    call_agent_model,
    get_anthropic_client,
    parse_json_reply,
)

__all__ = [
    "ModelReply",
    "call_agent_model",
    "get_anthropic_client",
    "parse_json_reply",
]
