"""Run lifecycle management for workflows.

Handles:
- At-most-one run per workflow (atomic run lock in the database)
- Cancellation (flag-based, checked between nodes)
- Recovery of runs orphaned by a dead process
- Stale run detection from the polling endpoint

Cancellation flags are tracked in-memory (per process) with the database
column as the cross-process fallback.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from src.executor.db import execute
from src.executor.errors import WorkflowBusyError
from src.executor.schemas import (
    NodeErrorEntry,
    NodeStatus,
    ScriptWorkflow,
    WorkflowStatus,
    utc_now,
)
from src.executor.workflow_store import load_workflow_unscoped, save_workflow

logger = logging.getLogger(__name__)

MAX_RUN_SECONDS = 2 * 60 * 60  # no pipeline should take longer than 2 hours

ORPHANED_RUN_ERROR = "Process terminated unexpectedly while the workflow was running"

# In-memory cancellation flags (per workflow_id)
_cancellation_flags: dict[str, bool] = {}
_flags_lock = threading.Lock()


# --- Run lock ---

def claim_run(workflow_id: str) -> str:
    """Take the workflow's run lock. Returns the lock token.

    Check-and-set in a single UPDATE, so two concurrent requests cannot
    both win. Raises WorkflowBusyError if another run holds the lock.
    """
    token = uuid.uuid4().hex
    claimed = execute(
        """UPDATE scriptforge_workflows
           SET run_lock = %s, locked_at = %s, cancel_requested = %s
           WHERE workflow_id = %s AND run_lock IS NULL""",
        (token, utc_now(), False, workflow_id),
        fetch="rowcount",
    )
    if claimed != 1:
        logger.warning(f"Run rejected: workflow {workflow_id} is already running")
        raise WorkflowBusyError(workflow_id)

    clear_cancellation(workflow_id)
    logger.info(f"Workflow {workflow_id}: run lock acquired")
    return token


def release_run(workflow_id: str, token: str) -> None:
    """Release the run lock if this token still holds it."""
    execute(
        """UPDATE scriptforge_workflows
           SET run_lock = NULL, locked_at = NULL, cancel_requested = %s
           WHERE workflow_id = %s AND run_lock = %s""",
        (False, workflow_id, token),
    )
    clear_cancellation(workflow_id)
    logger.info(f"Workflow {workflow_id}: run lock released")


# --- Cancellation ---

def request_cancellation(workflow_id: str) -> bool:
    """Ask a running workflow to stop before its next node.

    Returns True if a run was in flight and is now flagged.
    """
    flagged = execute(
        """UPDATE scriptforge_workflows
           SET cancel_requested = %s
           WHERE workflow_id = %s AND run_lock IS NOT NULL""",
        (True, workflow_id),
        fetch="rowcount",
    )
    if not flagged:
        logger.warning(f"Cannot cancel workflow {workflow_id}: no run in flight")
        return False

    with _flags_lock:
        _cancellation_flags[workflow_id] = True
    logger.info(f"Cancellation requested for workflow {workflow_id}")
    return True


def is_cancelled(workflow_id: str) -> bool:
    """Check the in-memory flag first, then the database."""
    with _flags_lock:
        if _cancellation_flags.get(workflow_id):
            return True

    row = execute(
        "SELECT cancel_requested FROM scriptforge_workflows WHERE workflow_id = %s",
        (workflow_id,),
        fetch="one",
    )
    if row and row.get("cancel_requested"):
        with _flags_lock:
            _cancellation_flags[workflow_id] = True
        return True
    return False


def clear_cancellation(workflow_id: str) -> None:
    """Drop the in-memory flag."""
    with _flags_lock:
        _cancellation_flags.pop(workflow_id, None)


# --- Recovery ---

def fail_interrupted_run(workflow: ScriptWorkflow, reason: str) -> None:
    """Mark a workflow and its in-flight node as failed."""
    for node in workflow.nodes:
        if node.data.status == NodeStatus.RUNNING:
            node.data.status = NodeStatus.ERROR
            node.data.error = reason
            workflow.progress.errors.append(NodeErrorEntry(node_id=node.id, error=reason))
    if workflow.status == WorkflowStatus.RUNNING:
        workflow.status = WorkflowStatus.ERROR
    workflow.progress.current_node_id = None
    save_workflow(workflow)


def _force_release(workflow_id: str) -> None:
    execute(
        """UPDATE scriptforge_workflows
           SET run_lock = NULL, locked_at = NULL, cancel_requested = %s
           WHERE workflow_id = %s""",
        (False, workflow_id),
    )
    clear_cancellation(workflow_id)


def recover_orphaned_runs() -> int:
    """Fail runs left locked by a previous process. Called on startup.

    Nothing executes across a restart, so any locked workflow is orphaned.
    Returns the number of recovered workflows.
    """
    rows = execute(
        "SELECT workflow_id FROM scriptforge_workflows WHERE run_lock IS NOT NULL",
        fetch="all",
    )
    recovered = 0
    for row in rows:
        workflow_id = row["workflow_id"]
        workflow = load_workflow_unscoped(workflow_id)
        if workflow is not None:
            fail_interrupted_run(workflow, ORPHANED_RUN_ERROR)
        _force_release(workflow_id)
        recovered += 1
        logger.warning(f"Recovered orphaned run of workflow {workflow_id} -> error")

    if recovered:
        logger.info(f"Startup recovery: {recovered} orphaned run(s) failed")
    return recovered


def check_stale_run(workflow_id: str) -> Optional[ScriptWorkflow]:
    """Fail a run that has held its lock for longer than MAX_RUN_SECONDS.

    Called from the polling endpoint. Returns the updated workflow if the
    run was stale, else None.
    """
    row = execute(
        "SELECT locked_at FROM scriptforge_workflows WHERE workflow_id = %s",
        (workflow_id,),
        fetch="one",
    )
    locked_at = row.get("locked_at") if row else None
    if not locked_at:
        return None

    if isinstance(locked_at, str):
        try:
            locked_dt = datetime.fromisoformat(locked_at)
        except ValueError:
            return None
    else:
        locked_dt = locked_at
    if locked_dt.tzinfo is None:
        locked_dt = locked_dt.replace(tzinfo=timezone.utc)

    elapsed = (datetime.now(timezone.utc) - locked_dt).total_seconds()
    if elapsed < MAX_RUN_SECONDS:
        return None

    hours = elapsed / 3600
    reason = (
        f"Run exceeded maximum runtime ({hours:.1f}h > {MAX_RUN_SECONDS / 3600:.0f}h)"
    )
    workflow = load_workflow_unscoped(workflow_id)
    if workflow is not None:
        fail_interrupted_run(workflow, reason)
    _force_release(workflow_id)
    logger.warning(f"Marked stale run of workflow {workflow_id} as failed ({hours:.1f}h)")
    return load_workflow_unscoped(workflow_id)
