"""State registry package."""
from __future__ import annotations

from .registry import StateRegistry, StateRegistryError

__all__ = ["StateRegistry", "StateRegistryError"]
