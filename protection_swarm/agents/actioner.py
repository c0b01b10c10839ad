"""Simulated plan execution. Nothing is signed or broadcast."""
from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping

from ..models import Position, Result
from .base import BaseAgent

logger = logging.getLogger(__name__)


class ActionerAgent(BaseAgent):
    name = "actioner"

    def __init__(self) -> None:
        super().__init__()
        self.executions = 0
        self.total_cost = 0.0

    def _health_details(self) -> dict[str, Any]:
        return {"executions": self.executions, "total_cost": self.total_cost}

    async def execute_plan(self, plan: Mapping[str, Any], position: Position) -> Result:
        actions = plan.get("actions")
        if actions is None:
            return Result.fail(f"Plan for {position.position_id} has no actions")

        cost = float(plan.get("cost", 0.0))
        tx_id = f"sim_{uuid.uuid4().hex[:16]}"
        self.executions += 1
        self.total_cost += cost
        logger.info(
            "Executed %d action(s) for %s as %s", len(actions), position.position_id, tx_id
        )
        return Result.ok(tx_id=tx_id, cost=cost, actions_executed=len(actions))
