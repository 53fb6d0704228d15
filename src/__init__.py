"""ScriptForge - multi-agent story analysis workflows.

Users compose workflows of analysis agents (story intelligence, knowledge
graph, timeline, continuity, co-authoring, recall, teaser), run them over a
story brief and manuscript, and poll per-node progress and results.
"""

__version__ = "0.1.0"
