"""Incident reporter: formats terminal incidents and fans out to notifiers."""
from __future__ import annotations

import logging
from typing import Any, Sequence

from ..interfaces.notifier import Notifier
from ..models import Incident, IncidentStatus, Result
from .base import BaseAgent

logger = logging.getLogger(__name__)

_HEADLINES = {
    IncidentStatus.PROTECTED: "✅ PROTECTED",
    IncidentStatus.POLICY_BLOCKED: "⛔ BLOCKED BY POLICY",
    IncidentStatus.FAILED: "⚠️ PROTECTION FAILED",
    IncidentStatus.ERROR: "🚨 PIPELINE ERROR",
}


def format_incident_report(incident: Incident) -> str:
    headline = _HEADLINES.get(incident.status, incident.status.value.upper())
    lines = [
        f"{headline} · {incident.incident_type.replace('_', ' ')}",
        "",
        f"Incident: {incident.incident_id}",
        f"Position: {', '.join(incident.position_ids)}",
        f"Severity: {incident.severity.value}",
    ]
    if incident.position_value_usd:
        lines.append(f"Value at risk: ${incident.position_value_usd:,.2f}")
    if incident.coordination_session_id:
        lines.append(f"Coordination session: {incident.coordination_session_id}")

    explanation = incident.stage_data("incident_analysis").get("short")
    if explanation:
        lines.extend(["", explanation])
    reason = incident.metadata.get("reason")
    if reason:
        lines.extend(["", f"Reason: {reason}"])

    stamp = incident.resolved_at or incident.detected_at
    lines.extend(["", f"{stamp.strftime('%Y-%m-%d %H:%M:%S')} UTC"])
    return "\n".join(lines)


class ReporterAgent(BaseAgent):
    name = "reporter"

    def __init__(self, notifiers: Sequence[Notifier] = ()) -> None:
        super().__init__()
        self._notifiers = list(notifiers)
        self.reports_sent = 0

    def _health_details(self) -> dict[str, Any]:
        return {"channels": len(self._notifiers), "reports_sent": self.reports_sent}

    async def report_incident(self, incident: Incident) -> Result:
        message = format_incident_report(incident)
        as_alert = incident.status != IncidentStatus.PROTECTED
        delivered = 0

        for notifier in self._notifiers:
            try:
                if as_alert:
                    sent = await notifier.send_alert(
                        message, subject=f"Incident {incident.status.value}"
                    )
                else:
                    sent = await notifier.send_log(message, silent=False)
            except Exception as e:
                logger.error("Notifier failed for incident %s: %s", incident.incident_id, e)
                continue
            if sent:
                delivered += 1

        if self._notifiers and delivered == 0:
            return Result.fail(f"No notifier delivered incident {incident.incident_id}")

        self.reports_sent += 1
        return Result.ok(delivered=delivered, channels=len(self._notifiers))
