"""Cross-position netting and coordination."""
from .engine import MatchingEngine, group_positions_for_netting

__all__ = ["MatchingEngine", "group_positions_for_netting"]
