from src.agents.registry import AgentRegistry
from src.executor.schemas import AgentKind


def test_default_definitions_cover_every_kind():
    registry = AgentRegistry()
    assert registry.count() == len(AgentKind)
    for kind in AgentKind:
        definition = registry.get(kind)
        assert definition.name
        assert "JSON" in definition.system_prompt


def test_lookup_by_string_and_display_name():
    registry = AgentRegistry()
    assert registry.get("continuity-validator").agent_type == AgentKind.CONTINUITY_VALIDATOR
    assert registry.get("not-an-agent") is None
    assert registry.display_name("not-an-agent", fallback="Custom") == "Custom"


def test_missing_definitions_file(tmp_path):
    registry = AgentRegistry(definitions_file=tmp_path / "missing.yaml")
    assert registry.count() == 0
    assert registry.list_summaries() == []


def test_invalid_entries_are_skipped(tmp_path):
    definitions = tmp_path / "agents.yaml"
    definitions.write_text(
        "agents:\n"
        "  - agent_type: story-intelligence\n"
        "    name: Story Intelligence\n"
        "  - agent_type: not-an-agent\n"
        "    name: Broken\n"
    )
    registry = AgentRegistry(definitions_file=definitions)
    assert [a.agent_type for a in registry.list_all()] == [AgentKind.STORY_INTELLIGENCE]
