"""Template incident explanations."""
from __future__ import annotations

from typing import Any

from ..models import Incident, Position, Result
from .base import BaseAgent


def _describe_plan(plan: dict[str, Any]) -> str:
    actions = plan.get("actions") or []
    if not actions:
        return "No corrective action was required."
    parts = [
        f"{a.get('type', 'action').replace('_', ' ')} of ${float(a.get('value_usd', 0.0)):,.2f} "
        f"{a.get('asset', '')}".strip()
        for a in actions
    ]
    return "Planned: " + "; ".join(parts) + "."


class ExplainerAgent(BaseAgent):
    name = "explainer"

    def __init__(self) -> None:
        super().__init__()
        self.explanations = 0

    def _health_details(self) -> dict[str, Any]:
        return {"explanations": self.explanations}

    async def explain_incident(self, incident: Incident, position: Position) -> Result:
        self.explanations += 1
        event = incident.incident_type.replace("_", " ")
        short = (
            f"{incident.severity.value.upper()} {event} on {position.protocol} "
            f"({position.chain}) position {position.position_id}"
        )

        prediction = incident.stage_data("risk_prediction")
        execution = incident.stage_data("plan_execution")
        lines = [
            short + ".",
            f"Collateral ${position.collateral_value_usd:,.2f} {position.collateral_asset}, "
            f"debt ${position.debt_value_usd:,.2f} {position.debt_asset}, "
            f"health factor {position.health_factor:.3f}.",
        ]
        if prediction and not prediction.get("skipped"):
            lines.append(
                f"Predicted risk level {prediction.get('risk_level')}, "
                f"time to breach about {float(prediction.get('ttb_minutes', 0.0)):,.0f} minutes."
            )
        lines.append(_describe_plan(dict(incident.stage_data("plan_optimization"))))
        if execution.get("tx_id"):
            lines.append(f"Executed as {execution['tx_id']}.")

        return Result.ok(short=short, detailed=" ".join(lines))
