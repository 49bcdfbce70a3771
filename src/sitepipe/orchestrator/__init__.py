"""Lightweight task orchestrator for the static site build.

Provides Task and Pipeline primitives, DAG scheduling, per-file incremental
skip, watch rules and a Typer CLI.
"""

from .core import Orchestrator, Pipeline, RunResult, TaskContext, TaskSpec, task  # re-export for convenience

__all__ = ["Orchestrator", "Pipeline", "RunResult", "TaskContext", "TaskSpec", "task"]
