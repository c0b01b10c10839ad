"""Heuristic protection planner."""
from __future__ import annotations

import logging
from typing import Any

from ..config import PolicyDefaults
from ..models import Incident, Position, Result, compute_health_factor
from .base import BaseAgent

logger = logging.getLogger(__name__)

GAS_COST_USD = 5.0
SLIPPAGE = 0.001


class OptimizerAgent(BaseAgent):
    """Sizes a single add-collateral or repay action to reach the target health factor.

    The target comes from the policy check's stage data when present, else
    from the configured policy defaults. Of the two candidate actions the one
    moving less capital wins.
    """

    name = "optimizer"

    def __init__(self, defaults: PolicyDefaults | None = None) -> None:
        super().__init__()
        self._defaults = defaults or PolicyDefaults()
        self.plans_generated = 0

    def _health_details(self) -> dict[str, Any]:
        return {"plans_generated": self.plans_generated}

    def _target(self, incident: Incident) -> float:
        return float(
            incident.stage_data("policy_check").get("hf_target", self._defaults.hf_target)
        )

    async def optimize_protection_plan(self, position: Position, incident: Incident) -> Result:
        target = self._target(incident)
        current = position.health_factor
        if position.liquidation_threshold <= 0:
            return Result.fail(
                f"Position {position.position_id} has no liquidation threshold"
            )

        if current >= target:
            return Result.ok(actions=[], cost=0.0, hf_after=current, target_hf=target)

        lt = position.liquidation_threshold
        add_value = position.debt_value_usd * target / lt - position.collateral_value_usd
        repay_value = position.debt_value_usd - position.collateral_value_usd * lt / target

        if repay_value < add_value:
            action = {
                "type": "repay",
                "asset": position.debt_asset,
                "value_usd": repay_value,
            }
            hf_after = compute_health_factor(
                position.collateral_value_usd, position.debt_value_usd - repay_value, lt
            )
        else:
            action = {
                "type": "add_collateral",
                "asset": position.collateral_asset,
                "value_usd": add_value,
            }
            hf_after = compute_health_factor(
                position.collateral_value_usd + add_value, position.debt_value_usd, lt
            )

        cost = GAS_COST_USD + action["value_usd"] * SLIPPAGE
        self.plans_generated += 1
        logger.info(
            "Plan for %s: %s $%.2f (hf %.3f -> %.3f, cost $%.2f)",
            position.position_id,
            action["type"],
            action["value_usd"],
            current,
            hf_after,
            cost,
        )
        return Result.ok(actions=[action], cost=cost, hf_after=hf_after, target_hf=target)
