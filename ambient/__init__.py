"""Ambient context capture for push-to-talk dictation."""

from .pipeline import ContextCollector
from .snapshot import ContextSnapshot

__all__ = ["ContextCollector", "ContextSnapshot"]
