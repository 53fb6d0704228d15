"""Shared fixtures for the test suite."""

from typing import Any, Callable, Optional

import pytest

from src.executor import db, run_manager
from src.executor.agent_invoker import AgentExecutor, AgentInvocation, set_agent_executor
from src.executor.schemas import (
    AgentKind,
    CreateWorkflowRequest,
    NodeData,
    ScriptWorkflow,
    WorkflowNode,
)
from src.executor.workflow_store import create_workflow

USER_ID = "user-1"

ENV_VARS = {
    "ANTHROPIC_API_KEY",
    "SCRIPTFORGE_DATABASE_URL",
    "SCRIPTFORGE_AGENT_MODEL",
    "SCRIPTFORGE_AGENT_FALLBACK_MODEL",
}


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep deployment settings from leaking into tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def database(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Fresh SQLite database per test."""
    monkeypatch.setattr(db, "DATABASE_URL", "")
    monkeypatch.setattr(db, "SQLITE_PATH", tmp_path / "scriptforge-test.db")
    db.reset_initialization()
    db.init_db()
    yield db.SQLITE_PATH
    db.reset_initialization()
    run_manager._cancellation_flags.clear()


class ScriptedExecutor(AgentExecutor):
    """Answers each agent kind from a script and records every call.

    A script entry may be a result value, an exception to raise, or a
    callable taking the context. Unscripted kinds answer {"agent": kind}.
    """

    def __init__(self, script: Optional[dict[str, Any]] = None):
        self.script = dict(script or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def execute(self, agent_kind: str, context: dict[str, Any]) -> AgentInvocation:
        self.calls.append((agent_kind, context))
        answer = self.script.get(agent_kind, {"agent": agent_kind})
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            answer = answer(context)
        return AgentInvocation(result=answer)

    def context_for(self, agent_kind: str) -> dict[str, Any]:
        for kind, context in self.calls:
            if kind == agent_kind:
                return context
        raise AssertionError(f"{agent_kind} was never invoked")


@pytest.fixture
def scripted_executor():
    """Install a ScriptedExecutor as the process-wide executor."""
    executor = ScriptedExecutor()
    set_agent_executor(executor)
    yield executor
    set_agent_executor(None)


def make_nodes(*kinds: AgentKind) -> list[WorkflowNode]:
    return [
        WorkflowNode(id=f"node-{i + 1}", data=NodeData(agent_type=kind, label=kind.value))
        for i, kind in enumerate(kinds)
    ]


@pytest.fixture
def workflow_factory(database) -> Callable[..., ScriptWorkflow]:
    """Create a stored workflow with one node per agent kind given."""

    def _create(
        *kinds: AgentKind,
        brief: str = "A detective story set in 1940s Los Angeles.",
        inputs: Optional[dict[str, Any]] = None,
        user_id: str = USER_ID,
    ) -> ScriptWorkflow:
        request = CreateWorkflowRequest(
            name="Test workflow",
            brief=brief,
            inputs=inputs or {},
            nodes=make_nodes(*kinds),
        )
        return create_workflow(user_id, request)

    return _create
