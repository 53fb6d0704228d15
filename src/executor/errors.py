"""Exceptions raised by the workflow executor.

Routes translate these into HTTP responses. Agent failures are not part of
this hierarchy: they are recorded on the failing node and never propagate.
"""


class WorkflowError(Exception):
    """Base class for executor errors."""


class WorkflowNotFoundError(WorkflowError):
    """No workflow with this id exists for the requesting user."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class NodeNotFoundError(WorkflowError):
    """The requested node is not part of the workflow."""

    def __init__(self, workflow_id: str, node_id: str):
        super().__init__(f"Node not found in workflow {workflow_id}: {node_id}")
        self.workflow_id = workflow_id
        self.node_id = node_id


class EmptyWorkflowError(WorkflowError):
    """A full run was requested for a workflow without nodes."""


class WorkflowBusyError(WorkflowError):
    """Another run already holds the workflow's run lock."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} is already running")
        self.workflow_id = workflow_id


class ConcurrentModificationError(WorkflowError):
    """The stored document changed since it was loaded (version mismatch)."""

    def __init__(self, workflow_id: str, expected_version: int):
        super().__init__(
            f"Workflow {workflow_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.workflow_id = workflow_id
        self.expected_version = expected_version


class InvalidNodeTransition(WorkflowError):
    """A node state change that the node lifecycle does not allow."""

    def __init__(self, node_id: str, current: str, target: str):
        super().__init__(f"Node {node_id}: cannot move from {current} to {target}")
        self.node_id = node_id
        self.current = current
        self.target = target
