"""Shared mutable state of one swarm instance."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field

from ..models import Incident

ATTACK_INCIDENT_TYPES = frozenset(
    {
        "flash_loan_attack",
        "sandwich_attack",
        "oracle_manipulation",
        "price_manipulation",
        "governance_attack",
        "liquidation_risk",
        "liquidation_attack",
        "suspicious_transaction",
    }
)


@dataclass
class SwarmMetrics:
    events_processed: int = 0
    incidents_handled: int = 0
    protections_executed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "events_processed": self.events_processed,
            "incidents_handled": self.incidents_handled,
            "protections_executed": self.protections_executed,
        }


@dataclass
class SwarmState:
    """Counters, the latest security incident slot and the processing lock.

    Counters and the slot are only mutated while ``lock`` is held.
    """

    metrics: SwarmMetrics = field(default_factory=SwarmMetrics)
    latest_security_incident: Incident | None = None
    running: bool = False
    started_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def mark_started(self) -> None:
        self.running = True
        self.started_at = time.monotonic()

    def mark_stopped(self) -> None:
        self.running = False

    @property
    def uptime_seconds(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    def track(self, incident: Incident) -> None:
        """Refresh the latest-security-incident slot for attack-related incidents."""
        if incident.incident_type in ATTACK_INCIDENT_TYPES:
            self.latest_security_incident = incident
