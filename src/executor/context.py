"""Analysis context threaded between agents.

The context is a plain mapping passed by value: every function here returns
a new mapping and leaves its arguments untouched. Base slots:

- storyBrief / manuscript: read-only inputs from the workflow
- previousResults: agent kind -> result for every agent that succeeded

On top of those, each recognized agent kind projects its result into one
well-known slot that later agents read (see CONTEXT_SLOTS).
"""

import logging
from typing import Any, Optional

from src.executor.schemas import AgentKind, ScriptWorkflow

logger = logging.getLogger(__name__)

STORY_BRIEF = "storyBrief"
MANUSCRIPT = "manuscript"
PREVIOUS_RESULTS = "previousResults"

READ_ONLY_SLOTS = (STORY_BRIEF, MANUSCRIPT)

# Closed mapping: every AgentKind has exactly one slot.
CONTEXT_SLOTS: dict[AgentKind, str] = {
    AgentKind.STORY_INTELLIGENCE: "storyContext",
    AgentKind.KNOWLEDGE_GRAPH: "knowledgeGraph",
    AgentKind.TEMPORAL_REASONING: "timeline",
    AgentKind.CONTINUITY_VALIDATOR: "continuityReport",
    AgentKind.CREATIVE_COAUTHOR: "suggestions",
    AgentKind.INTELLIGENT_RECALL: "memoryBank",
    AgentKind.CINEMATIC_TEASER: "teaserContent",
}

if set(CONTEXT_SLOTS) != set(AgentKind):
    raise RuntimeError("every agent kind needs a context slot")


def agent_kind_key(agent_kind: Any) -> str:
    """Normalize an agent kind (enum or raw string) to its string value."""
    if isinstance(agent_kind, AgentKind):
        return agent_kind.value
    return str(agent_kind)


def slot_for(agent_kind: Any) -> Optional[str]:
    """Context slot for an agent kind, or None for unrecognized kinds."""
    try:
        return CONTEXT_SLOTS[AgentKind(agent_kind_key(agent_kind))]
    except ValueError:
        return None


def build_initial_context(workflow: ScriptWorkflow) -> dict[str, Any]:
    """Fresh context from the workflow's brief and manuscript inputs."""
    inputs = workflow.inputs or {}
    return {
        STORY_BRIEF: workflow.brief or "",
        MANUSCRIPT: inputs.get("manuscript") or inputs.get("fullText") or "",
        PREVIOUS_RESULTS: {},
    }


def project(agent_kind: Any, result: Any, context: dict[str, Any]) -> dict[str, Any]:
    """Record an agent's result in the context.

    Sets previousResults[agent_kind] and, for recognized kinds, the matching
    named slot. Applying the same (agent_kind, result) twice is a no-op.
    """
    key = agent_kind_key(agent_kind)
    updated = dict(context)
    previous = dict(context.get(PREVIOUS_RESULTS) or {})
    previous[key] = result
    updated[PREVIOUS_RESULTS] = previous

    slot = slot_for(key)
    if slot is not None:
        updated[slot] = result
    return updated


def merge_agent_update(
    context: dict[str, Any],
    updated_context: Optional[dict[str, Any]],
) -> dict[str, Any]:
    """Fold the context an agent returned into the current context.

    The agent may add slots but cannot rewrite the read-only inputs, and its
    previousResults are merged into ours rather than replacing them.
    """
    merged = dict(context)
    if not updated_context:
        return merged

    for key, value in updated_context.items():
        if key in READ_ONLY_SLOTS:
            continue
        if key == PREVIOUS_RESULTS:
            previous = dict(context.get(PREVIOUS_RESULTS) or {})
            previous.update(value or {})
            merged[PREVIOUS_RESULTS] = previous
        else:
            merged[key] = value
    return merged


def accumulate(
    context: dict[str, Any],
    agent_kind: Any,
    result: Any,
    updated_context: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Context after a successful agent: merge its update, then project its result."""
    return project(agent_kind, result, merge_agent_update(context, updated_context))


def restore_context(workflow: ScriptWorkflow, exclude_node_id: str) -> dict[str, Any]:
    """Rebuild a context from every other node that already has a result.

    Used by single-node runs. Position in the workflow is ignored, so a node
    can see results of nodes stored after it.
    """
    context = build_initial_context(workflow)
    for node in workflow.nodes:
        if node.id == exclude_node_id or node.data.result is None:
            continue
        context = project(node.data.agent_type, node.data.result, context)

    logger.debug(
        f"Restored context for node {exclude_node_id}: "
        f"{sorted(context[PREVIOUS_RESULTS])}"
    )
    return context
