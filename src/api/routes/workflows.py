"""Workflow API routes.

Endpoints:
    GET    /v1/workflows                     List the user's workflows
    POST   /v1/workflows                     Create a workflow
    POST   /v1/workflows/execute             Run a workflow (or one node)
    GET    /v1/workflows/{workflow_id}           Full workflow document
    PUT    /v1/workflows/{workflow_id}           Update authoring fields
    DELETE /v1/workflows/{workflow_id}           Delete a workflow
    GET    /v1/workflows/{workflow_id}/progress  Poll run status + progress
    POST   /v1/workflows/{workflow_id}/cancel    Stop a run before its next node

Execution runs synchronously; the handlers are plain `def` so FastAPI
runs them in its threadpool.
"""

import logging
from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.auth import get_current_user
from src.executor.errors import (
    ConcurrentModificationError,
    EmptyWorkflowError,
    InvalidNodeTransition,
    NodeNotFoundError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)
from src.executor.run_manager import check_stale_run, request_cancellation
from src.executor.schemas import (
    CreateWorkflowRequest,
    ExecuteWorkflowRequest,
    ScriptWorkflow,
    SingleNodeRunResult,
    UpdateWorkflowRequest,
    WorkflowProgressResponse,
    WorkflowRunResult,
    WorkflowSummary,
)
from src.executor.workflow_runner import execute_single_node, execute_workflow
from src.executor.workflow_store import (
    create_workflow,
    delete_workflow,
    get_workflow,
    is_run_locked,
    list_workflows,
    update_workflow,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _require(workflow_id: str, user_id: str) -> ScriptWorkflow:
    workflow = get_workflow(workflow_id, user_id)
    if workflow is None:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {workflow_id}")
    return workflow


@router.get("", response_model=list[WorkflowSummary])
def list_user_workflows(
    limit: int = Query(50, ge=1, le=200),
    user_id: str = Depends(get_current_user),
) -> list[WorkflowSummary]:
    """List the user's workflows, most recently updated first."""
    return list_workflows(user_id, limit=limit)


@router.post("", response_model=ScriptWorkflow, status_code=201)
def create_user_workflow(
    request: CreateWorkflowRequest,
    user_id: str = Depends(get_current_user),
) -> ScriptWorkflow:
    """Create a workflow. Nodes start pending."""
    return create_workflow(user_id, request)


@router.post("/execute", response_model=Union[WorkflowRunResult, SingleNodeRunResult])
def execute(
    request: ExecuteWorkflowRequest,
    user_id: str = Depends(get_current_user),
):
    """Run the whole workflow, or only `single_agent_id` when given.

    Node failures do not fail the request: they show up per node and in the
    workflow status (partial / error).
    """
    if not request.workflow_id:
        raise HTTPException(status_code=400, detail="Workflow ID is required")

    try:
        if request.single_agent_id:
            return execute_single_node(
                request.workflow_id,
                user_id,
                request.single_agent_id,
                agent_type=request.agent_type,
            )
        return execute_workflow(request.workflow_id, user_id)

    except WorkflowNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except NodeNotFoundError:
        raise HTTPException(status_code=404, detail="Node not found in workflow")
    except EmptyWorkflowError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (WorkflowBusyError, InvalidNodeTransition) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error executing workflow {request.workflow_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to execute workflow")


@router.get("/{workflow_id}", response_model=ScriptWorkflow)
def get_user_workflow(
    workflow_id: str,
    user_id: str = Depends(get_current_user),
) -> ScriptWorkflow:
    """Full workflow document including node results and analysis context."""
    return _require(workflow_id, user_id)


@router.put("/{workflow_id}", response_model=ScriptWorkflow)
def update_user_workflow(
    workflow_id: str,
    request: UpdateWorkflowRequest,
    user_id: str = Depends(get_current_user),
) -> ScriptWorkflow:
    """Update name, description, brief, inputs, nodes or edges."""
    try:
        return update_workflow(workflow_id, user_id, request)
    except WorkflowNotFoundError:
        raise HTTPException(status_code=404, detail=f"Workflow not found: {workflow_id}")
    except (WorkflowBusyError, ConcurrentModificationError) as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{workflow_id}")
def delete_user_workflow(
    workflow_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Delete a workflow that is not currently running."""
    if delete_workflow(workflow_id, user_id):
        return {"workflow_id": workflow_id, "deleted": True}

    _require(workflow_id, user_id)
    raise HTTPException(
        status_code=409,
        detail=f"Cannot delete workflow {workflow_id} while it is running",
    )


@router.get("/{workflow_id}/progress", response_model=WorkflowProgressResponse)
def get_workflow_progress(
    workflow_id: str,
    user_id: str = Depends(get_current_user),
) -> WorkflowProgressResponse:
    """Primary polling endpoint while a run is in flight."""
    workflow = _require(workflow_id, user_id)

    # Fail runs whose thread died without releasing the lock
    stale_update = check_stale_run(workflow_id)
    if stale_update is not None:
        workflow = stale_update

    return WorkflowProgressResponse(
        workflow_id=workflow.workflow_id,
        status=workflow.status,
        progress=workflow.progress,
        node_statuses={n.id: n.data.status for n in workflow.nodes},
        last_run=workflow.last_run,
        updated_at=workflow.updated_at,
    )


@router.post("/{workflow_id}/cancel")
def cancel_workflow(
    workflow_id: str,
    user_id: str = Depends(get_current_user),
) -> dict:
    """Request cancellation; the run stops before its next node."""
    _require(workflow_id, user_id)
    if not request_cancellation(workflow_id):
        raise HTTPException(
            status_code=400,
            detail=f"Workflow {workflow_id} has no run in flight",
        )
    return {
        "workflow_id": workflow_id,
        "cancel_requested": True,
        "running": is_run_locked(workflow_id),
    }
