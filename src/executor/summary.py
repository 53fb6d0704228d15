"""Post-run execution summary over node outcomes and the final context."""

from typing import Any

from src.executor.schemas import ExecutionSummary, NodeOutcome


def _is_error_payload(result: Any) -> bool:
    return isinstance(result, dict) and bool(result.get("error"))


def _len(value: Any) -> int:
    try:
        return len(value) if value else 0
    except TypeError:
        return 0


def _field(slot: Any, key: str, default: Any = None) -> Any:
    if isinstance(slot, dict):
        value = slot.get(key)
        return default if value is None else value
    return default


def _highlights(context: dict[str, Any]) -> list[str]:
    highlights: list[str] = []

    story = context.get("storyContext")
    if story:
        highlights.append(f"Genre identified: {_field(story, 'genre', 'unknown')}")

    graph = context.get("knowledgeGraph")
    if graph:
        highlights.append(f"{_len(_field(graph, 'characters'))} characters mapped")

    timeline = context.get("timeline")
    if timeline:
        highlights.append(
            f"{_len(_field(timeline, 'chronologicalEvents'))} timeline events ordered"
        )

    continuity = context.get("continuityReport")
    if continuity:
        highlights.append(
            f"Continuity score: {_field(continuity, 'continuityScore', 0)}/100"
        )

    suggestions = context.get("suggestions")
    if suggestions:
        highlights.append(
            f"{_len(_field(suggestions, 'sceneSuggestions'))} scene suggestions generated"
        )

    memory = context.get("memoryBank")
    if memory:
        highlights.append(f"{_len(memory) if isinstance(memory, list) else 0} recall insights stored")

    teaser = context.get("teaserContent")
    if teaser:
        highlights.append(f'Trailer tagline: "{_field(teaser, "tagline", "")}"')

    return highlights


def generate_execution_summary(
    outcomes: list[NodeOutcome],
    context: dict[str, Any],
) -> ExecutionSummary:
    """Aggregate digest: counts, which slots were filled, and highlight lines."""
    successful = [
        o for o in outcomes
        if o.succeeded and not _is_error_payload(o.result)
    ]
    return ExecutionSummary(
        agents_executed=len(outcomes),
        successful_agents=len(successful),
        story_analyzed=bool(context.get("storyContext")),
        knowledge_graph_built=bool(context.get("knowledgeGraph")),
        timeline_analyzed=bool(context.get("timeline")),
        continuity_checked=bool(context.get("continuityReport")),
        suggestions_generated=bool(context.get("suggestions")),
        teaser_created=bool(context.get("teaserContent")),
        highlights=_highlights(context),
    )
