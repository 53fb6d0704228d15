import pytest

from src.executor.errors import (
    EmptyWorkflowError,
    NodeNotFoundError,
    WorkflowBusyError,
    WorkflowNotFoundError,
)
from src.executor.run_manager import claim_run, is_cancelled, release_run, request_cancellation
from src.executor.schemas import (
    AgentKind,
    NodeOutcome,
    NodeStatus,
    WorkflowStatus,
)
from src.executor.workflow_runner import (
    derive_workflow_status,
    execute_single_node,
    execute_workflow,
)
from src.executor.workflow_store import get_workflow, is_run_locked

from conftest import USER_ID

KINDS = (
    AgentKind.STORY_INTELLIGENCE,
    AgentKind.KNOWLEDGE_GRAPH,
    AgentKind.CONTINUITY_VALIDATOR,
)


def _outcome(status: NodeStatus) -> NodeOutcome:
    return NodeOutcome(node_id="n", agent_type="story-intelligence", status=status)


def test_derive_workflow_status():
    ok, failed = _outcome(NodeStatus.SUCCESS), _outcome(NodeStatus.ERROR)
    assert derive_workflow_status([ok, ok]) == WorkflowStatus.COMPLETED
    assert derive_workflow_status([ok, failed]) == WorkflowStatus.PARTIAL
    assert derive_workflow_status([failed, failed]) == WorkflowStatus.ERROR
    assert derive_workflow_status([ok], cancelled=True) == WorkflowStatus.CANCELLED


def test_partial_failure_run(workflow_factory, scripted_executor):
    scripted_executor.script = {
        "story-intelligence": {"genre": "noir"},
        "knowledge-graph": TimeoutError("timeout"),
        "continuity-validator": {"continuityScore": 82},
    }
    workflow = workflow_factory(*KINDS)

    run = execute_workflow(workflow.workflow_id, USER_ID)

    assert run.success is True
    assert run.workflow.status == WorkflowStatus.PARTIAL
    progress = run.workflow.progress
    assert progress.completed_node_ids == ["node-1", "node-3"]
    assert [(e.node_id, e.error) for e in progress.errors] == [("node-2", "timeout")]
    assert progress.current_node_id is None
    assert progress.total_nodes == 3

    context = run.workflow.analysis_context
    assert context["storyContext"] == {"genre": "noir"}
    assert "knowledgeGraph" not in context
    assert context["continuityReport"] == {"continuityScore": 82}

    continuity_context = scripted_executor.context_for("continuity-validator")
    assert continuity_context["previousResults"] == {"story-intelligence": {"genre": "noir"}}

    assert [r.status for r in run.results] == [
        NodeStatus.SUCCESS, NodeStatus.ERROR, NodeStatus.SUCCESS,
    ]
    assert run.summary.agents_executed == 3
    assert run.summary.successful_agents == 2
    assert "Continuity score: 82/100" in run.summary.highlights


def test_run_is_persisted(workflow_factory, scripted_executor):
    scripted_executor.script = {"knowledge-graph": RuntimeError("timeout")}
    workflow = workflow_factory(*KINDS)

    execute_workflow(workflow.workflow_id, USER_ID)

    stored = get_workflow(workflow.workflow_id, USER_ID)
    assert stored.status == WorkflowStatus.PARTIAL
    assert stored.last_run is not None
    nodes = {n.id: n.data for n in stored.nodes}
    assert nodes["node-1"].status == NodeStatus.SUCCESS
    assert nodes["node-1"].output
    assert nodes["node-2"].status == NodeStatus.ERROR
    assert nodes["node-2"].error == "timeout"
    assert nodes["node-2"].result is None
    assert nodes["node-3"].input.previous_agents == ["story-intelligence"]
    assert not is_run_locked(workflow.workflow_id)


def test_every_node_is_completed_or_failed(workflow_factory, scripted_executor):
    scripted_executor.script = {
        "story-intelligence": ValueError("bad json"),
        "continuity-validator": ValueError("bad json"),
    }
    workflow = workflow_factory(*KINDS)

    run = execute_workflow(workflow.workflow_id, USER_ID)

    progress = run.workflow.progress
    assert len(progress.completed_node_ids) + len(progress.errors) == len(KINDS)


def test_all_nodes_failing_gives_error_status(workflow_factory, scripted_executor):
    scripted_executor.script = {kind.value: RuntimeError("down") for kind in KINDS}
    workflow = workflow_factory(*KINDS)

    run = execute_workflow(workflow.workflow_id, USER_ID)

    assert run.success is False
    assert run.workflow.status == WorkflowStatus.ERROR
    assert run.workflow.progress.completed_node_ids == []


def test_exception_without_message_uses_class_name(workflow_factory, scripted_executor):
    scripted_executor.script = {"story-intelligence": KeyError()}
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)

    run = execute_workflow(workflow.workflow_id, USER_ID)

    assert run.workflow.progress.errors[0].error == "KeyError"


def test_empty_brief_and_manuscript_still_run(workflow_factory, scripted_executor):
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE, brief="")

    run = execute_workflow(workflow.workflow_id, USER_ID)

    assert run.workflow.status == WorkflowStatus.COMPLETED
    context = scripted_executor.context_for("story-intelligence")
    assert context["storyBrief"] == ""
    assert context["manuscript"] == ""
    assert run.workflow.nodes[0].data.input.has_manuscript is False


def test_full_run_resets_earlier_results(workflow_factory, scripted_executor):
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE, AgentKind.KNOWLEDGE_GRAPH)
    execute_workflow(workflow.workflow_id, USER_ID)

    scripted_executor.calls.clear()
    execute_workflow(workflow.workflow_id, USER_ID)

    # The second run starts from a clean context, not the first run's results
    first_context = scripted_executor.context_for("story-intelligence")
    assert first_context["previousResults"] == {}


def test_agent_cannot_alias_runner_context(workflow_factory, scripted_executor):
    def mutating_agent(context):
        context["previousResults"]["injected"] = True
        context["storyBrief"] = "tampered"
        return {"genre": "noir"}

    scripted_executor.script = {"story-intelligence": mutating_agent}
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE, AgentKind.KNOWLEDGE_GRAPH)

    run = execute_workflow(workflow.workflow_id, USER_ID)

    graph_context = scripted_executor.context_for("knowledge-graph")
    assert "injected" not in graph_context["previousResults"]
    assert graph_context["storyBrief"] == workflow.brief
    assert run.workflow.status == WorkflowStatus.COMPLETED


def test_empty_workflow_is_rejected(workflow_factory, scripted_executor):
    workflow = workflow_factory()
    with pytest.raises(EmptyWorkflowError):
        execute_workflow(workflow.workflow_id, USER_ID)
    assert scripted_executor.calls == []


def test_unknown_workflow_or_other_owner(workflow_factory, scripted_executor):
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)
    with pytest.raises(WorkflowNotFoundError):
        execute_workflow("wf-missing", USER_ID)
    with pytest.raises(WorkflowNotFoundError):
        execute_workflow(workflow.workflow_id, "someone-else")


def test_second_run_is_rejected_while_locked(workflow_factory, scripted_executor):
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)
    token = claim_run(workflow.workflow_id)
    try:
        with pytest.raises(WorkflowBusyError):
            execute_workflow(workflow.workflow_id, USER_ID)
        with pytest.raises(WorkflowBusyError):
            execute_single_node(workflow.workflow_id, USER_ID, "node-1")
    finally:
        release_run(workflow.workflow_id, token)

    assert scripted_executor.calls == []
    assert get_workflow(workflow.workflow_id, USER_ID).status == WorkflowStatus.IDLE


def test_cancellation_stops_before_next_node(workflow_factory, scripted_executor):
    workflow = workflow_factory(*KINDS)

    def cancelling_agent(context):
        assert request_cancellation(workflow.workflow_id) is True
        return {"genre": "noir"}

    scripted_executor.script = {"story-intelligence": cancelling_agent}

    run = execute_workflow(workflow.workflow_id, USER_ID)

    assert run.workflow.status == WorkflowStatus.CANCELLED
    assert [kind for kind, _ in scripted_executor.calls] == ["story-intelligence"]
    statuses = [n.data.status for n in run.workflow.nodes]
    assert statuses == [NodeStatus.SUCCESS, NodeStatus.PENDING, NodeStatus.PENDING]
    assert not is_cancelled(workflow.workflow_id)


def test_single_node_run_isolated_from_other_nodes(workflow_factory, scripted_executor):
    scripted_executor.script = {
        "story-intelligence": {"genre": "noir"},
        "knowledge-graph": RuntimeError("timeout"),
        "continuity-validator": {"continuityScore": 82},
    }
    workflow = workflow_factory(*KINDS)
    before = execute_workflow(workflow.workflow_id, USER_ID).workflow

    scripted_executor.script["knowledge-graph"] = {"characters": ["Marlowe"]}
    result = execute_single_node(workflow.workflow_id, USER_ID, "node-2")

    assert result.success is True
    assert result.result == {"characters": ["Marlowe"]}
    assert result.node_data.status == NodeStatus.SUCCESS

    after = get_workflow(workflow.workflow_id, USER_ID)
    assert after.status == before.status == WorkflowStatus.PARTIAL
    assert after.progress == before.progress
    for old, new in zip(before.nodes, after.nodes):
        if old.id == "node-2":
            continue
        assert new.data.status == old.data.status
        assert new.data.result == old.data.result

    assert after.analysis_context["knowledgeGraph"] == {"characters": ["Marlowe"]}
    assert after.analysis_context["storyContext"] == {"genre": "noir"}


def test_single_node_run_sees_results_of_later_nodes(workflow_factory, scripted_executor):
    scripted_executor.script = {
        "story-intelligence": {"genre": "noir"},
        "continuity-validator": {"continuityScore": 82},
    }
    workflow = workflow_factory(*KINDS)
    execute_workflow(workflow.workflow_id, USER_ID)

    scripted_executor.calls.clear()
    execute_single_node(workflow.workflow_id, USER_ID, "node-1")

    # Context is rebuilt from every other node with a result, not only earlier ones
    context = scripted_executor.context_for("story-intelligence")
    assert set(context["previousResults"]) == {"knowledge-graph", "continuity-validator"}
    assert context["continuityReport"] == {"continuityScore": 82}


def test_single_node_agent_override(workflow_factory, scripted_executor):
    scripted_executor.script = {"cinematic-teaser": {"tagline": "Trust no one"}}
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)

    result = execute_single_node(
        workflow.workflow_id, USER_ID, "node-1", agent_type=AgentKind.CINEMATIC_TEASER
    )

    assert [kind for kind, _ in scripted_executor.calls] == ["cinematic-teaser"]
    assert result.node_data.output.startswith("**Tagline:** Trust no one")
    stored = get_workflow(workflow.workflow_id, USER_ID)
    assert stored.nodes[0].data.agent_type == AgentKind.STORY_INTELLIGENCE
    assert stored.analysis_context["teaserContent"] == {"tagline": "Trust no one"}


def test_single_node_failure_is_reported(workflow_factory, scripted_executor):
    scripted_executor.script = {"story-intelligence": RuntimeError("rate limited")}
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)

    result = execute_single_node(workflow.workflow_id, USER_ID, "node-1")

    assert result.success is False
    assert result.error == "rate limited"
    assert result.node_data.status == NodeStatus.ERROR
    stored = get_workflow(workflow.workflow_id, USER_ID)
    assert stored.nodes[0].data.error == "rate limited"
    assert stored.status == WorkflowStatus.IDLE
    assert stored.progress.errors == []
    assert not is_run_locked(workflow.workflow_id)


def test_single_node_unknown_node(workflow_factory, scripted_executor):
    workflow = workflow_factory(AgentKind.STORY_INTELLIGENCE)
    with pytest.raises(NodeNotFoundError):
        execute_single_node(workflow.workflow_id, USER_ID, "node-404")


def _fail_checkpoint(monkeypatch, on_call: int):
    from src.executor import workflow_runner

    real_checkpoint = workflow_runner._checkpoint
    calls = {"n": 0}

    def flaky_checkpoint(wf):
        calls["n"] += 1
        if calls["n"] == on_call:
            raise OSError("disk full")
        real_checkpoint(wf)

    monkeypatch.setattr(workflow_runner, "_checkpoint", flaky_checkpoint)


def test_persistence_failure_aborts_run(workflow_factory, scripted_executor, monkeypatch):
    workflow = workflow_factory(*KINDS)
    # 1: reset, 2: node-1 running, 3: node-1 success
    _fail_checkpoint(monkeypatch, on_call=3)

    with pytest.raises(OSError):
        execute_workflow(workflow.workflow_id, USER_ID)

    stored = get_workflow(workflow.workflow_id, USER_ID)
    assert stored.status == WorkflowStatus.ERROR
    assert stored.progress.current_node_id is None
    assert not is_run_locked(workflow.workflow_id)

    node = stored.get_node("node-1")
    assert node.data.status == NodeStatus.ERROR
    assert node.data.error == "Run aborted: disk full"
    assert [(e.node_id, e.error) for e in stored.progress.errors] == [
        ("node-1", "Run aborted: disk full"),
    ]
    assert stored.get_node("node-2").data.status == NodeStatus.PENDING

    rerun = execute_single_node(workflow.workflow_id, USER_ID, "node-1")

    assert rerun.success is True
    assert rerun.node_data.status == NodeStatus.SUCCESS
    assert get_workflow(workflow.workflow_id, USER_ID).get_node("node-1").data.status == (
        NodeStatus.SUCCESS
    )


def test_persistence_failure_during_single_node_run(workflow_factory, scripted_executor, monkeypatch):
    workflow = workflow_factory(*KINDS)
    # 1: node-2 running, 2: node-2 success
    _fail_checkpoint(monkeypatch, on_call=2)

    with pytest.raises(OSError):
        execute_single_node(workflow.workflow_id, USER_ID, "node-2")

    stored = get_workflow(workflow.workflow_id, USER_ID)
    node = stored.get_node("node-2")
    assert node.data.status == NodeStatus.ERROR
    assert node.data.error == "Run aborted: disk full"
    assert stored.progress.errors == []
    assert not is_run_locked(workflow.workflow_id)

    assert execute_single_node(workflow.workflow_id, USER_ID, "node-2").success is True


def test_progress_is_checkpointed_while_node_runs(workflow_factory, scripted_executor):
    workflow = workflow_factory(*KINDS)
    seen = {}

    def read_stored_workflow(context):
        stored = get_workflow(workflow.workflow_id, USER_ID)
        seen["status"] = stored.status
        seen["current_node_id"] = stored.progress.current_node_id
        seen["completed_node_ids"] = list(stored.progress.completed_node_ids)
        seen["node_statuses"] = {n.id: n.data.status for n in stored.nodes}
        return {"entities": []}

    scripted_executor.script = {"knowledge-graph": read_stored_workflow}

    execute_workflow(workflow.workflow_id, USER_ID)

    assert seen["status"] == WorkflowStatus.RUNNING
    assert seen["current_node_id"] == "node-2"
    assert seen["completed_node_ids"] == ["node-1"]
    assert seen["node_statuses"] == {
        "node-1": NodeStatus.SUCCESS,
        "node-2": NodeStatus.RUNNING,
        "node-3": NodeStatus.PENDING,
    }
