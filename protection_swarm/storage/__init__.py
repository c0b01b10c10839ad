"""Storage backends."""
from .memory import InMemoryRepository, load_positions_file

__all__ = ["InMemoryRepository", "load_positions_file"]
