"""Visualizer package - Rich terminal views for session observability."""

from .session_log import render_session_logs, render_task_attempts
from .task_tree import build_task_tree, render_session_summary, render_task_tree

__all__ = [
	"build_task_tree",
	"render_session_logs",
	"render_session_summary",
	"render_task_attempts",
	"render_task_tree",
]
