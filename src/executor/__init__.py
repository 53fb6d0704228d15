"""Execution engine for multi-agent story analysis workflows.

Architecture (bottom-up):
- db: SQLite/Postgres access
- workflow_store / video_store: document persistence
- context: copy-on-write analysis context and agent-kind slot projection
- formatter: per-agent markdown digests of results
- node_state: node lifecycle (pending -> running -> success | error)
- agent_invoker: agent executor contract and LLM-backed default
- run_manager: run lock, cancellation, orphaned-run recovery
- summary: post-run execution summary
- workflow_runner: full runs and single-node re-runs
"""
