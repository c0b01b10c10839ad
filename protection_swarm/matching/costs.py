"""Cost, confidence and complexity heuristics for coordinated protection.

The constants come from MatchingConfig; they are tunable policy parameters,
not calibrated economics.
"""
from __future__ import annotations

from typing import Iterable, Sequence

from ..config import MatchingConfig
from ..models import NettingOpportunity, Position


def individual_protection_cost(position: Position, cfg: MatchingConfig) -> float:
    """Gas plus transaction cost of protecting one position on its own."""
    size_factor = position.collateral_value_usd / 10_000.0
    return cfg.base_protection_cost_usd + size_factor * cfg.size_cost_per_10k_usd


def total_individual_cost(positions: Iterable[Position], cfg: MatchingConfig) -> float:
    return sum(individual_protection_cost(p, cfg) for p in positions)


def coordinated_protection_cost(positions: Sequence[Position], cfg: MatchingConfig) -> float:
    """Joint cost; the per-position discount never takes it below the floor ratio."""
    total = total_individual_cost(positions, cfg)
    discounted = total - len(positions) * cfg.coordination_discount_per_position_usd
    return max(discounted, total * cfg.coordinated_cost_floor_ratio)


def bulk_protection_cost(positions: Sequence[Position], cfg: MatchingConfig) -> float:
    return cfg.bulk_base_cost_usd + len(positions) * cfg.bulk_per_position_cost_usd


def protocol_maturity(protocol: str, cfg: MatchingConfig) -> float:
    return cfg.protocol_maturity.get(protocol.lower(), cfg.default_protocol_maturity)


def netting_amount(risky: Position, safe: Position, cfg: MatchingConfig) -> float:
    """Conservative amount the safe position can lend to the risky one."""
    safe_excess = safe.collateral_value_usd - safe.debt_value_usd * cfg.safe_collateralization
    return min(
        risky.debt_value_usd * cfg.risky_debt_fraction,
        safe_excess * cfg.safe_excess_fraction,
    )


def netting_confidence(
    risky: Position, safe: Position, amount: float, cfg: MatchingConfig
) -> float:
    health_gap = safe.health_factor - risky.health_factor
    # an unlevered safe position has an infinite gap; cap it at the full score
    gap_score = min(health_gap / 3.0, 1.0)
    smaller_value = min(risky.collateral_value_usd, safe.collateral_value_usd)
    amount_ratio = amount / smaller_value if smaller_value > 0 else 1.0
    confidence = gap_score * (1.0 - amount_ratio) * protocol_maturity(risky.protocol, cfg)
    return min(max(confidence, 0.0), 1.0)


def coordination_complexity(positions: Sequence[Position]) -> float:
    """Grows with the number of distinct users, chains and protocols involved."""
    users = len({p.user_id for p in positions})
    chains = len({p.chain for p in positions})
    protocols = len({p.protocol for p in positions})
    complexity = (users - 1) * 0.2 + (chains - 1) * 0.3 + (protocols - 1) * 0.1
    return min(max(complexity, 0.0), 1.0)


def coordination_score(opportunity: NettingOpportunity) -> float:
    return (
        (opportunity.potential_savings / 100.0)
        * opportunity.confidence
        * (1.0 - opportunity.complexity)
    )
