"""Graph storage."""

from .repository import Direction, GraphRepository
from .memory import InMemoryGraphRepository

__all__ = ["Direction", "GraphRepository", "InMemoryGraphRepository"]
