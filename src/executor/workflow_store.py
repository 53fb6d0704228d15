"""Persist workflow documents.

Each workflow is one JSON document row. Every save is a full-document write
guarded by the row's version: the write only lands if nobody else saved
since the document was loaded, otherwise ConcurrentModificationError.
"""

import logging
from typing import Optional

from src.executor.db import _json_dumps, _json_loads, execute
from src.executor.errors import (
    ConcurrentModificationError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)
from src.executor.schemas import (
    CreateWorkflowRequest,
    ScriptWorkflow,
    UpdateWorkflowRequest,
    WorkflowSummary,
    utc_now,
)

logger = logging.getLogger(__name__)


def _row_to_workflow(row: dict) -> ScriptWorkflow:
    document = _json_loads(row["document"])
    document["version"] = row["version"]
    return ScriptWorkflow.model_validate(document)


def _document_json(workflow: ScriptWorkflow) -> str:
    return _json_dumps(workflow.model_dump(mode="json", exclude={"version"}))


def create_workflow(user_id: str, request: CreateWorkflowRequest) -> ScriptWorkflow:
    """Insert a new workflow owned by user_id. Returns it at version 1."""
    now = utc_now()
    workflow = ScriptWorkflow(
        user_id=user_id,
        name=request.name,
        description=request.description,
        brief=request.brief,
        inputs=request.inputs,
        nodes=request.nodes,
        edges=request.edges,
        created_at=now,
        updated_at=now,
        version=1,
    )

    execute(
        """INSERT INTO scriptforge_workflows
           (workflow_id, user_id, name, status, document, version,
            created_at, updated_at)
           VALUES (%s, %s, %s, %s, %s, %s, %s, %s)""",
        (workflow.workflow_id, user_id, workflow.name, workflow.status.value,
         _document_json(workflow), workflow.version, now, now),
    )

    logger.info(
        f"Created workflow {workflow.workflow_id} for user {user_id} "
        f"({len(workflow.nodes)} nodes)"
    )
    return workflow


def get_workflow(workflow_id: str, user_id: str) -> Optional[ScriptWorkflow]:
    """Load a workflow owned by user_id, or None."""
    row = execute(
        """SELECT document, version FROM scriptforge_workflows
           WHERE workflow_id = %s AND user_id = %s""",
        (workflow_id, user_id),
        fetch="one",
    )
    if row is None:
        return None
    return _row_to_workflow(row)


def require_workflow(workflow_id: str, user_id: str) -> ScriptWorkflow:
    """Like get_workflow but raises WorkflowNotFoundError."""
    workflow = get_workflow(workflow_id, user_id)
    if workflow is None:
        raise WorkflowNotFoundError(workflow_id)
    return workflow


def save_workflow(workflow: ScriptWorkflow) -> ScriptWorkflow:
    """Write the full document if the stored version still matches.

    Bumps `workflow.version` in place on success so the caller can keep
    saving the same object.
    """
    expected = workflow.version
    workflow.updated_at = utc_now()

    updated = execute(
        """UPDATE scriptforge_workflows
           SET document = %s, name = %s, status = %s,
               version = version + 1, updated_at = %s
           WHERE workflow_id = %s AND version = %s""",
        (_document_json(workflow), workflow.name, workflow.status.value,
         workflow.updated_at, workflow.workflow_id, expected),
        fetch="rowcount",
    )
    if updated != 1:
        raise ConcurrentModificationError(workflow.workflow_id, expected)

    workflow.version = expected + 1
    return workflow


def list_workflows(user_id: str, limit: int = 50) -> list[WorkflowSummary]:
    """List a user's workflows, most recently updated first."""
    rows = execute(
        """SELECT document, version FROM scriptforge_workflows
           WHERE user_id = %s
           ORDER BY updated_at DESC LIMIT %s""",
        (user_id, limit),
        fetch="all",
    )
    summaries = []
    for row in rows:
        workflow = _row_to_workflow(row)
        summaries.append(
            WorkflowSummary(
                workflow_id=workflow.workflow_id,
                name=workflow.name,
                status=workflow.status,
                node_count=len(workflow.nodes),
                last_run=workflow.last_run,
                updated_at=workflow.updated_at,
            )
        )
    return summaries


def update_workflow(
    workflow_id: str,
    user_id: str,
    request: UpdateWorkflowRequest,
) -> ScriptWorkflow:
    """Apply authoring changes (name, brief, inputs, nodes, edges)."""
    workflow = require_workflow(workflow_id, user_id)
    if is_run_locked(workflow_id):
        raise WorkflowBusyError(workflow_id)
    changes = request.model_dump(exclude_unset=True, exclude_none=True)
    for field in changes:
        setattr(workflow, field, getattr(request, field))

    save_workflow(workflow)
    logger.info(f"Updated workflow {workflow_id}: {sorted(changes)}")
    return workflow


def delete_workflow(workflow_id: str, user_id: str) -> bool:
    """Delete a workflow that is not locked by a run. Returns True if deleted."""
    deleted = execute(
        """DELETE FROM scriptforge_workflows
           WHERE workflow_id = %s AND user_id = %s AND run_lock IS NULL""",
        (workflow_id, user_id),
        fetch="rowcount",
    )
    if deleted:
        logger.info(f"Deleted workflow {workflow_id}")
    return bool(deleted)


def is_run_locked(workflow_id: str) -> bool:
    """True while a run holds the workflow's run lock."""
    row = execute(
        "SELECT run_lock FROM scriptforge_workflows WHERE workflow_id = %s",
        (workflow_id,),
        fetch="one",
    )
    return bool(row and row.get("run_lock"))


def load_workflow_unscoped(workflow_id: str) -> Optional[ScriptWorkflow]:
    """Load a workflow regardless of owner (startup recovery and internal use)."""
    row = execute(
        "SELECT document, version FROM scriptforge_workflows WHERE workflow_id = %s",
        (workflow_id,),
        fetch="one",
    )
    if row is None:
        return None
    return _row_to_workflow(row)
