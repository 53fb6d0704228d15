"""Executor-side schemas for workflows, nodes, progress and run results.

A ScriptWorkflow is persisted as one JSON document. Nodes are executed in
the order they are stored; `edges` only describe the editor layout.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class AgentKind(str, Enum):
    """The closed set of analysis agents a node can run."""
    STORY_INTELLIGENCE = "story-intelligence"
    KNOWLEDGE_GRAPH = "knowledge-graph"
    TEMPORAL_REASONING = "temporal-reasoning"
    CONTINUITY_VALIDATOR = "continuity-validator"
    CREATIVE_COAUTHOR = "creative-coauthor"
    INTELLIGENT_RECALL = "intelligent-recall"
    CINEMATIC_TEASER = "cinematic-teaser"


class WorkflowStatus(str, Enum):
    """Overall workflow states."""
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL = "partial"
    ERROR = "error"
    CANCELLED = "cancelled"


class NodeStatus(str, Enum):
    """Per-node execution states."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class InputSnapshot(BaseModel):
    """Bounded view of the context a node was invoked with (display only)."""

    story_brief: str = ""
    has_manuscript: bool = False
    previous_agents: list[str] = Field(default_factory=list)


class NodeData(BaseModel):
    """Execution state carried by a workflow node."""

    agent_type: AgentKind
    label: str = ""
    status: NodeStatus = NodeStatus.PENDING
    input: Optional[InputSnapshot] = None
    result: Any = None
    output: Optional[str] = Field(
        default=None,
        description="Human-readable digest of the result",
    )
    error: Optional[str] = None


class WorkflowNode(BaseModel):
    """One step of a workflow, bound to a single agent kind."""

    id: str = Field(default_factory=lambda: f"node-{uuid.uuid4().hex[:8]}")
    type: str = "agent"
    position: dict[str, float] = Field(default_factory=dict)
    data: NodeData


class WorkflowEdge(BaseModel):
    """Editor connection between two nodes. Not used for scheduling."""

    id: str = Field(default_factory=lambda: f"edge-{uuid.uuid4().hex[:8]}")
    source: str
    target: str


class NodeErrorEntry(BaseModel):
    """A node failure recorded in the run progress."""

    node_id: str
    error: str


class WorkflowProgress(BaseModel):
    """Progress record polled by clients while a run is in flight."""

    current_node_id: Optional[str] = None
    completed_node_ids: list[str] = Field(default_factory=list)
    total_nodes: int = 0
    errors: list[NodeErrorEntry] = Field(default_factory=list)


def _check_unique_node_ids(nodes: list[WorkflowNode]) -> list[WorkflowNode]:
    seen: set[str] = set()
    for node in nodes:
        if node.id in seen:
            raise ValueError(f"Duplicate node id: {node.id}")
        seen.add(node.id)
    return nodes


class ScriptWorkflow(BaseModel):
    """The persisted multi-agent analysis workflow."""

    workflow_id: str = Field(default_factory=lambda: f"wf-{uuid.uuid4().hex[:12]}")
    user_id: str
    name: str = "Untitled workflow"
    description: str = ""
    brief: str = ""
    inputs: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form inputs; 'manuscript' or 'fullText' holds the manuscript",
    )
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)
    status: WorkflowStatus = WorkflowStatus.IDLE
    progress: WorkflowProgress = Field(default_factory=WorkflowProgress)
    analysis_context: dict[str, Any] = Field(default_factory=dict)
    last_run: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: Optional[str] = None
    version: int = 0

    @field_validator("nodes")
    @classmethod
    def _unique_node_ids(cls, nodes: list[WorkflowNode]) -> list[WorkflowNode]:
        return _check_unique_node_ids(nodes)

    def get_node(self, node_id: str) -> Optional[WorkflowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None


class WorkflowSummary(BaseModel):
    """Lightweight listing entry."""

    workflow_id: str
    name: str
    status: WorkflowStatus
    node_count: int = 0
    last_run: Optional[str] = None
    updated_at: Optional[str] = None


class CreateWorkflowRequest(BaseModel):
    """Request to author a new workflow."""

    name: str = "Untitled workflow"
    description: str = ""
    brief: str = ""
    inputs: dict[str, Any] = Field(default_factory=dict)
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def _unique_node_ids(cls, nodes: list[WorkflowNode]) -> list[WorkflowNode]:
        return _check_unique_node_ids(nodes)


class UpdateWorkflowRequest(BaseModel):
    """Partial update of authoring fields. Execution state is not writable."""

    name: Optional[str] = None
    description: Optional[str] = None
    brief: Optional[str] = None
    inputs: Optional[dict[str, Any]] = None
    nodes: Optional[list[WorkflowNode]] = None
    edges: Optional[list[WorkflowEdge]] = None

    @field_validator("nodes")
    @classmethod
    def _unique_node_ids(
        cls, nodes: Optional[list[WorkflowNode]]
    ) -> Optional[list[WorkflowNode]]:
        if nodes is None:
            return None
        return _check_unique_node_ids(nodes)


class ExecuteWorkflowRequest(BaseModel):
    """Trigger a full run, or a single node when single_agent_id is set."""

    workflow_id: Optional[str] = None
    single_agent_id: Optional[str] = None
    agent_type: Optional[AgentKind] = Field(
        default=None,
        description="Override the agent kind for a single-node run",
    )


class NodeOutcome(BaseModel):
    """Result of attempting one node during a run."""

    node_id: str
    agent_type: str
    agent_name: str = ""
    status: NodeStatus
    result: Any = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == NodeStatus.SUCCESS


class ExecutionSummary(BaseModel):
    """Aggregate digest of a full run."""

    agents_executed: int = 0
    successful_agents: int = 0
    story_analyzed: bool = False
    knowledge_graph_built: bool = False
    timeline_analyzed: bool = False
    continuity_checked: bool = False
    suggestions_generated: bool = False
    teaser_created: bool = False
    highlights: list[str] = Field(default_factory=list)


class WorkflowRunResult(BaseModel):
    """Response of a full run."""

    success: bool
    workflow: ScriptWorkflow
    results: list[NodeOutcome] = Field(default_factory=list)
    summary: ExecutionSummary


class SingleNodeRunResult(BaseModel):
    """Response of a single-node run."""

    success: bool
    result: Any = None
    node_data: NodeData
    message: str = ""
    error: Optional[str] = None


class WorkflowProgressResponse(BaseModel):
    """Response for progress polling."""

    workflow_id: str
    status: WorkflowStatus
    progress: WorkflowProgress
    node_statuses: dict[str, NodeStatus] = Field(default_factory=dict)
    last_run: Optional[str] = None
    updated_at: Optional[str] = None


class GeneratedVideo(BaseModel):
    """Record of a video rendered from an agent's visual prompt."""

    video_id: str = Field(default_factory=lambda: f"vid-{uuid.uuid4().hex[:12]}")
    workflow_id: str
    user_id: str
    agent_id: str = "unknown"
    agent_type: str
    prompt_index: int = 0
    prompt_key: str = ""
    prompt: str = ""
    scene_name: Optional[str] = None
    scene_details: Optional[dict[str, Any]] = None
    local_path: str
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    config: dict[str, Any] = Field(default_factory=dict)
    operation_id: Optional[str] = None
    project_name: Optional[str] = None
    draft_name: Optional[str] = None
    status: str = "completed"
    generated_at: str = Field(default_factory=utc_now)


class SaveVideoRequest(BaseModel):
    """Request to record a generated video. Missing ids yield a 400."""

    workflow_id: Optional[str] = None
    agent_type: Optional[str] = None
    local_path: Optional[str] = None
    agent_id: Optional[str] = None
    prompt_index: Optional[int] = None
    prompt_key: Optional[str] = None
    prompt: Optional[str] = None
    scene_name: Optional[str] = None
    scene_details: Optional[dict[str, Any]] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    config: Optional[dict[str, Any]] = None
    operation_id: Optional[str] = None
    project_name: Optional[str] = None
    draft_name: Optional[str] = None
