"""Boundary between the workflow runner and the analysis agents.

The runner only knows `AgentExecutor.execute(agent_kind, context)`, which
returns the agent's result plus the context it wants merged. Any exception
it raises is recorded as that node's error.

`LLMAgentExecutor` is the default implementation: one Claude call per
agent, prompted by the agent's definition, answering in JSON.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from src.agents.registry import AgentRegistry, get_agent_registry
from src.executor.context import (
    MANUSCRIPT,
    PREVIOUS_RESULTS,
    STORY_BRIEF,
    agent_kind_key,
    project,
)
from src.llm.client import call_agent_model, parse_json_reply

logger = logging.getLogger(__name__)

MAX_MANUSCRIPT_CHARS = int(os.environ.get("SCRIPTFORGE_MAX_MANUSCRIPT_CHARS", "150000"))
MAX_AGENT_OUTPUT_TOKENS = 8000


@dataclass
class AgentInvocation:
    """What an agent hands back to the runner."""

    result: Any
    updated_context: dict[str, Any] = field(default_factory=dict)


class AgentExecutor(ABC):
    """Runs one analysis agent against the current context."""

    @abstractmethod
    def execute(self, agent_kind: str, context: dict[str, Any]) -> AgentInvocation:
        """Run the agent. Raise on failure; the message becomes the node error."""


class LLMAgentExecutor(AgentExecutor):
    """Runs agents as single Claude calls driven by their definitions."""

    def __init__(self, registry: Optional[AgentRegistry] = None):
        self.registry = registry or get_agent_registry()

    def build_user_message(self, context: dict[str, Any]) -> str:
        """Brief, manuscript (truncated) and earlier agent results as markdown."""
        parts = [f"## Story Brief\n\n{context.get(STORY_BRIEF) or '(none provided)'}"]

        manuscript = context.get(MANUSCRIPT) or ""
        if manuscript:
            if len(manuscript) > MAX_MANUSCRIPT_CHARS:
                logger.info(
                    f"Manuscript truncated from {len(manuscript):,} "
                    f"to {MAX_MANUSCRIPT_CHARS:,} chars"
                )
                manuscript = manuscript[:MAX_MANUSCRIPT_CHARS] + "\n\n[... truncated ...]"
            parts.append(f"## Manuscript\n\n{manuscript}")

        previous = context.get(PREVIOUS_RESULTS) or {}
        for kind, result in previous.items():
            rendered = json.dumps(result, indent=2, ensure_ascii=False, default=str)
            parts.append(f"## Earlier analysis: {kind}\n\n```json\n{rendered}\n```")

        parts.append("Respond with JSON only.")
        return "\n\n".join(parts)

    def execute(self, agent_kind: str, context: dict[str, Any]) -> AgentInvocation:
        key = agent_kind_key(agent_kind)
        definition = self.registry.get(key)
        if definition is None:
            raise ValueError(f"Unknown agent type: {key}")

        reply = call_agent_model(
            self.build_user_message(context),
            system_prompt=definition.system_prompt,
            max_tokens=MAX_AGENT_OUTPUT_TOKENS,
        )
        logger.info(f"Agent {key} answered via {reply.model} ({reply.total_tokens} tokens)")

        try:
            result = parse_json_reply(reply.text)
        except json.JSONDecodeError as e:
            raise ValueError(f"{definition.name} returned invalid JSON: {e}") from e

        return AgentInvocation(result=result, updated_context=project(key, result, context))


# Process-wide executor, replaceable for tests and alternative backends
_executor: Optional[AgentExecutor] = None
_executor_lock = threading.Lock()


def get_agent_executor() -> AgentExecutor:
    """Get the process-wide agent executor (LLM-backed by default)."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = LLMAgentExecutor()
        return _executor


def set_agent_executor(executor: Optional[AgentExecutor]) -> None:
    """Install an executor; None restores the default on next use."""
    global _executor
    with _executor_lock:
        _executor = executor
