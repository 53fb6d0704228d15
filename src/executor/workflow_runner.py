"""Workflow execution: run every node in order, or re-run a single node.

Full run:

1. Claim the workflow's run lock (one run per workflow at a time)
2. Reset progress and node states, mark the workflow running
3. Run each node in stored order against the accumulated context,
   checkpointing the document after every state change
4. A failed node is recorded and skipped; the loop carries on with the
   context as it was before that node
5. Fold the per-node outcomes into the final status and build the summary

Single-node run re-executes one node against a context rebuilt from every
other node that already has a result. It never touches the workflow's
status or progress.

Both modes run synchronously in the calling thread; the API runs them in
FastAPI's threadpool.
"""

import copy
import logging
from typing import Any, Optional

from src.agents.registry import get_agent_registry
from src.executor.agent_invoker import AgentExecutor, get_agent_executor
from src.executor.context import (
    accumulate,
    agent_kind_key,
    build_initial_context,
    restore_context,
)
from src.executor.errors import EmptyWorkflowError, NodeNotFoundError
from src.executor.node_state import complete_node, fail_node, reset_node, start_node
from src.executor.run_manager import (
    claim_run,
    fail_interrupted_run,
    is_cancelled,
    release_run,
)
from src.executor.schemas import (
    NodeErrorEntry,
    NodeOutcome,
    NodeStatus,
    ScriptWorkflow,
    SingleNodeRunResult,
    WorkflowNode,
    WorkflowProgress,
    WorkflowRunResult,
    WorkflowStatus,
    utc_now,
)
from src.executor.summary import generate_execution_summary
from src.executor.workflow_store import get_workflow, require_workflow, save_workflow

logger = logging.getLogger(__name__)


def _checkpoint(workflow: ScriptWorkflow) -> None:
    """Persist the full document. Failures here are fatal to the run."""
    save_workflow(workflow)
    logger.debug(f"Checkpoint: workflow {workflow.workflow_id} v{workflow.version}")


def derive_workflow_status(outcomes: list[NodeOutcome], cancelled: bool = False) -> WorkflowStatus:
    """Fold node outcomes into the workflow's final status."""
    if cancelled:
        return WorkflowStatus.CANCELLED
    if not any(o.succeeded for o in outcomes):
        return WorkflowStatus.ERROR
    if any(not o.succeeded for o in outcomes):
        return WorkflowStatus.PARTIAL
    return WorkflowStatus.COMPLETED


def _run_node(
    workflow: ScriptWorkflow,
    node: WorkflowNode,
    context: dict[str, Any],
    agent_kind: str,
    executor: AgentExecutor,
    track_progress: bool,
) -> tuple[NodeOutcome, dict[str, Any]]:
    """Run one node and checkpoint each transition.

    Returns the outcome and the context for the next node, which is the
    input context unchanged when the agent failed.
    """
    agent_name = get_agent_registry().display_name(agent_kind, fallback=node.data.label)

    if track_progress:
        workflow.progress.current_node_id = node.id
    start_node(node, context)
    _checkpoint(workflow)

    logger.info(f"Executing agent {agent_kind} for node {node.id}")
    try:
        # The agent gets its own copy so it cannot alias our context
        invocation = executor.execute(agent_kind, copy.deepcopy(context))
    except Exception as e:
        error = str(e) or e.__class__.__name__
        logger.error(f"Node {node.id} ({agent_kind}) failed: {error}")
        fail_node(node, error)
        if track_progress:
            workflow.progress.errors.append(NodeErrorEntry(node_id=node.id, error=error))
        _checkpoint(workflow)
        return NodeOutcome(
            node_id=node.id,
            agent_type=agent_kind,
            agent_name=agent_name,
            status=NodeStatus.ERROR,
            error=error,
        ), context

    complete_node(node, invocation.result, agent_kind)
    next_context = accumulate(
        context, agent_kind, invocation.result, invocation.updated_context
    )
    if track_progress:
        workflow.progress.completed_node_ids.append(node.id)
    _checkpoint(workflow)

    return NodeOutcome(
        node_id=node.id,
        agent_type=agent_kind,
        agent_name=agent_name,
        status=NodeStatus.SUCCESS,
        result=invocation.result,
    ), next_context


def _mark_run_failed(workflow_id: str, user_id: str, reason: str) -> None:
    """Best-effort: flag an aborted run and its in-flight node as error.

    Checkpoints already written stay.
    """
    try:
        workflow = get_workflow(workflow_id, user_id)
        if workflow is None or workflow.status != WorkflowStatus.RUNNING:
            return
        fail_interrupted_run(workflow, reason)
    except Exception as e:
        logger.warning(f"Could not mark workflow {workflow_id} as failed: {e}")


def _mark_node_failed(workflow_id: str, user_id: str, node_id: str, reason: str) -> None:
    """Best-effort: move a node left running by an aborted single-node run to error."""
    try:
        workflow = get_workflow(workflow_id, user_id)
        node = workflow.get_node(node_id) if workflow is not None else None
        if node is None or node.data.status != NodeStatus.RUNNING:
            return
        fail_node(node, reason)
        save_workflow(workflow)
    except Exception as e:
        logger.warning(f"Could not mark node {node_id} of workflow {workflow_id} as failed: {e}")


def _run_all_nodes(workflow: ScriptWorkflow, executor: AgentExecutor) -> WorkflowRunResult:
    workflow.status = WorkflowStatus.RUNNING
    workflow.last_run = utc_now()
    workflow.progress = WorkflowProgress(
        current_node_id=workflow.nodes[0].id,
        total_nodes=len(workflow.nodes),
    )
    for node in workflow.nodes:
        reset_node(node)
    _checkpoint(workflow)

    context = build_initial_context(workflow)
    outcomes: list[NodeOutcome] = []
    cancelled = False

    for node in workflow.nodes:
        if is_cancelled(workflow.workflow_id):
            logger.info(f"Workflow {workflow.workflow_id} cancelled before node {node.id}")
            cancelled = True
            break

        outcome, context = _run_node(
            workflow, node, context, node.data.agent_type.value, executor,
            track_progress=True,
        )
        outcomes.append(outcome)

    workflow.status = derive_workflow_status(outcomes, cancelled)
    workflow.progress.current_node_id = None
    workflow.analysis_context = context
    _checkpoint(workflow)

    logger.info(
        f"Workflow {workflow.workflow_id} finished: status={workflow.status.value}, "
        f"{len(workflow.progress.completed_node_ids)}/{workflow.progress.total_nodes} "
        f"nodes succeeded, {len(workflow.progress.errors)} failed"
    )

    return WorkflowRunResult(
        success=any(o.succeeded for o in outcomes),
        workflow=workflow,
        results=outcomes,
        summary=generate_execution_summary(outcomes, context),
    )


def execute_workflow(
    workflow_id: str,
    user_id: str,
    executor: Optional[AgentExecutor] = None,
) -> WorkflowRunResult:
    """Run every node of a workflow in order.

    Raises:
        WorkflowNotFoundError: no such workflow for this user
        EmptyWorkflowError: the workflow has no nodes
        WorkflowBusyError: another run holds the lock
    Any persistence error aborts the run and propagates.
    """
    workflow = require_workflow(workflow_id, user_id)
    if not workflow.nodes:
        raise EmptyWorkflowError(f"Workflow {workflow_id} has no nodes to execute")

    token = claim_run(workflow_id)
    try:
        # Reload under the lock so the first checkpoint sees the latest version
        workflow = require_workflow(workflow_id, user_id)
        if not workflow.nodes:
            raise EmptyWorkflowError(f"Workflow {workflow_id} has no nodes to execute")

        logger.info(
            f"Starting workflow {workflow_id} ({len(workflow.nodes)} nodes): "
            f"{[n.data.agent_type.value for n in workflow.nodes]}"
        )
        return _run_all_nodes(workflow, executor or get_agent_executor())

    except EmptyWorkflowError:
        raise
    except Exception as e:
        logger.error(f"Workflow {workflow_id} run aborted: {e}", exc_info=True)
        _mark_run_failed(workflow_id, user_id, f"Run aborted: {e}")
        raise

    finally:
        release_run(workflow_id, token)


def execute_single_node(
    workflow_id: str,
    user_id: str,
    node_id: str,
    agent_type: Optional[str] = None,
    executor: Optional[AgentExecutor] = None,
) -> SingleNodeRunResult:
    """Re-run one node; `agent_type` overrides the node's own agent kind.

    The context is rebuilt from every other node that has a result,
    wherever it sits in the workflow.

    Raises:
        WorkflowNotFoundError / NodeNotFoundError: unknown workflow or node
        WorkflowBusyError: another run holds the lock
    A persistence error moves the node to error and propagates.
    """
    workflow = require_workflow(workflow_id, user_id)
    if workflow.get_node(node_id) is None:
        raise NodeNotFoundError(workflow_id, node_id)

    token = claim_run(workflow_id)
    try:
        workflow = require_workflow(workflow_id, user_id)
        node = workflow.get_node(node_id)
        if node is None:
            raise NodeNotFoundError(workflow_id, node_id)

        agent_kind = agent_kind_key(agent_type or node.data.agent_type)
        context = restore_context(workflow, node_id)
        logger.info(f"Executing single agent {agent_kind} for node {node_id}")

        outcome, context = _run_node(
            workflow, node, context, agent_kind, executor or get_agent_executor(),
            track_progress=False,
        )

        if not outcome.succeeded:
            return SingleNodeRunResult(
                success=False,
                node_data=node.data,
                message=f"{agent_kind} failed",
                error=outcome.error,
            )

        workflow.analysis_context = {**workflow.analysis_context, **context}
        _checkpoint(workflow)

        return SingleNodeRunResult(
            success=True,
            result=outcome.result,
            node_data=node.data,
            message=f"{agent_kind} executed successfully",
        )

    except NodeNotFoundError:
        raise
    except Exception as e:
        logger.error(f"Single-node run of {node_id} in {workflow_id} aborted: {e}", exc_info=True)
        _mark_node_failed(workflow_id, user_id, node_id, f"Run aborted: {e}")
        raise

    finally:
        release_run(workflow_id, token)
