"""Orchestration: run controller, worker pool, stage executor."""

from .run_controller import RunController
from .toolset import ToolSet

__all__ = ["RunController", "ToolSet"]
