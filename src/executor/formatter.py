"""Render agent results as short markdown digests for display.

`render_output` never raises: a renderer that trips over an unexpected
result shape falls back to the generic dump.
"""

import json
import logging
from typing import Any, Callable

from src.executor.schemas import AgentKind

logger = logging.getLogger(__name__)


def _count(result: dict, key: str) -> int:
    value = result.get(key)
    return len(value) if value else 0


def _value(result: dict, key: str) -> str:
    value = result.get(key)
    return "N/A" if value is None else str(value)


def _joined(result: dict, key: str, sep: str) -> str:
    value = result.get(key)
    if not value:
        return "N/A"
    if isinstance(value, str):
        return value
    return sep.join(str(v) for v in value)


def _render_story(result: dict) -> str:
    return (
        f"**Genre:** {_value(result, 'genre')}\n"
        f"**Themes:** {_joined(result, 'themes', ', ')}\n"
        f"**Setting:** {_value(result, 'setting')}\n"
        f"**Main Conflict:** {_value(result, 'mainConflict')}"
    )


def _render_knowledge_graph(result: dict) -> str:
    return (
        f"**Characters:** {_count(result, 'characters')}\n"
        f"**Locations:** {_count(result, 'locations')}\n"
        f"**Events:** {_count(result, 'events')}\n"
        f"**Relationships:** {_count(result, 'relationships')}\n"
        f"**Plot Threads:** {_count(result, 'plotThreads')}"
    )


def _render_timeline(result: dict) -> str:
    return (
        f"**Timeline Events:** {_count(result, 'chronologicalEvents')}\n"
        f"**Flashbacks:** {_count(result, 'flashbacks')}\n"
        f"**Causal Chains:** {_count(result, 'causalChains')}\n"
        f"**Issues Found:** {_count(result, 'temporalIssues')}"
    )


def _render_continuity(result: dict) -> str:
    return (
        f"**Continuity Score:** {_value(result, 'continuityScore')}/100\n"
        f"**Contradictions:** {_count(result, 'contradictions')}\n"
        f"**Errors:** {_count(result, 'errors')}\n"
        f"**Recommendations:** {_count(result, 'recommendations')}"
    )


def _render_coauthor(result: dict) -> str:
    return (
        f"**Scene Suggestions:** {_count(result, 'sceneSuggestions')}\n"
        f"**Plot Developments:** {_count(result, 'plotDevelopments')}\n"
        f"**Dialogue Ideas:** {_count(result, 'dialogueImprovements')}\n"
        f"**Character Arcs:** {_count(result, 'characterArcGuidance')}"
    )


def _render_recall(result: list) -> str:
    # Recall returns a list of {query, ...} insights rather than a mapping
    if not isinstance(result, list):
        raise TypeError(f"expected a list of insights, got {type(result).__name__}")
    lines = [f"**Insights Generated:** {len(result)}"]
    for insight in result[:3]:
        query = insight.get("query") if isinstance(insight, dict) else insight
        lines.append(f"• {query}")
    return "\n".join(lines)


def _render_teaser(result: dict) -> str:
    return (
        f"**Tagline:** {_value(result, 'tagline')}\n"
        f"**Visual Scenes:** {_count(result, 'visualPrompts')}\n"
        f"**Hooks:** {_joined(result, 'hooks', ' | ')}"
    )


RENDERERS: dict[AgentKind, Callable[[Any], str]] = {
    AgentKind.STORY_INTELLIGENCE: _render_story,
    AgentKind.KNOWLEDGE_GRAPH: _render_knowledge_graph,
    AgentKind.TEMPORAL_REASONING: _render_timeline,
    AgentKind.CONTINUITY_VALIDATOR: _render_continuity,
    AgentKind.CREATIVE_COAUTHOR: _render_coauthor,
    AgentKind.INTELLIGENT_RECALL: _render_recall,
    AgentKind.CINEMATIC_TEASER: _render_teaser,
}

if set(RENDERERS) != set(AgentKind):
    raise RuntimeError("every agent kind needs a renderer")


def render_generic(result: Any) -> str:
    """Text as-is, anything else as indented JSON (repr if not serializable)."""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(result)


def render_output(agent_kind: Any, result: Any) -> str:
    """Digest of one agent result, keyed by agent kind."""
    try:
        kind = AgentKind(agent_kind)
    except (ValueError, TypeError):
        return render_generic(result)

    try:
        return RENDERERS[kind](result)
    except Exception as e:
        logger.debug(f"Renderer for {kind.value} failed, using generic output: {e}")
        return render_generic(result)
