"""Reusable workflow packaging."""

from nodeflow.builder.workflow import Workflow

__all__ = ["Workflow"]
