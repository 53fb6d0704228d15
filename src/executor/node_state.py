"""Node lifecycle: pending -> running -> success | error.

A finished node only re-enters `running` through an explicit re-run
(full run or single-node run). `reset_node` puts any node back to pending
at the start of a full run.
"""

import logging
from typing import Any

from src.executor.context import MANUSCRIPT, PREVIOUS_RESULTS, STORY_BRIEF
from src.executor.errors import InvalidNodeTransition
from src.executor.formatter import render_output
from src.executor.schemas import InputSnapshot, NodeStatus, WorkflowNode

logger = logging.getLogger(__name__)

MAX_BRIEF_PREVIEW_CHARS = 500
TRUNCATION_MARKER = "..."

ALLOWED_TRANSITIONS: dict[NodeStatus, set[NodeStatus]] = {
    NodeStatus.PENDING: {NodeStatus.RUNNING},
    NodeStatus.RUNNING: {NodeStatus.SUCCESS, NodeStatus.ERROR},
    NodeStatus.SUCCESS: {NodeStatus.RUNNING},
    NodeStatus.ERROR: {NodeStatus.RUNNING},
}


def _transition(node: WorkflowNode, target: NodeStatus) -> None:
    current = node.data.status
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidNodeTransition(node.id, current.value, target.value)
    node.data.status = target
    logger.debug(f"Node {node.id}: {current.value} -> {target.value}")


def snapshot_input(context: dict[str, Any]) -> InputSnapshot:
    """Bounded, display-only projection of the context."""
    brief = context.get(STORY_BRIEF) or ""
    if len(brief) > MAX_BRIEF_PREVIEW_CHARS:
        brief = brief[:MAX_BRIEF_PREVIEW_CHARS] + TRUNCATION_MARKER
    return InputSnapshot(
        story_brief=brief,
        has_manuscript=bool(context.get(MANUSCRIPT)),
        previous_agents=list(context.get(PREVIOUS_RESULTS) or {}),
    )


def reset_node(node: WorkflowNode) -> None:
    """Back to pending with no execution state."""
    node.data.status = NodeStatus.PENDING
    node.data.input = None
    node.data.result = None
    node.data.output = None
    node.data.error = None


def start_node(node: WorkflowNode, context: dict[str, Any]) -> None:
    """Enter running: capture the input snapshot and drop any previous outcome."""
    _transition(node, NodeStatus.RUNNING)
    node.data.input = snapshot_input(context)
    node.data.result = None
    node.data.output = None
    node.data.error = None


def complete_node(node: WorkflowNode, result: Any, agent_kind: Any = None) -> None:
    """Enter success with the agent's result and its rendered digest."""
    _transition(node, NodeStatus.SUCCESS)
    node.data.result = result
    node.data.output = render_output(agent_kind or node.data.agent_type, result)


def fail_node(node: WorkflowNode, error: str) -> None:
    """Enter error. Result and output stay unset."""
    _transition(node, NodeStatus.ERROR)
    node.data.error = error
