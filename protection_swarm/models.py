"""Data models: all frozen (immutable)."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .errors import ErrorKind, InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_health_factor(
    collateral_value_usd: float, debt_value_usd: float, liquidation_threshold: float
) -> float:
    """Risk-weighted collateral over debt.

    ``+inf`` without debt, ``0`` when there is debt but no collateral.
    """
    if debt_value_usd <= 0:
        return math.inf
    if collateral_value_usd <= 0:
        return 0.0
    return (collateral_value_usd * liquidation_threshold) / debt_value_usd


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    DETECTED = "detected"
    POLICY_BLOCKED = "policy_blocked"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    PROTECTED = "protected"
    FAILED = "failed"
    ERROR = "error"


TERMINAL_STATUSES = frozenset(
    {
        IncidentStatus.POLICY_BLOCKED,
        IncidentStatus.PROTECTED,
        IncidentStatus.FAILED,
        IncidentStatus.ERROR,
    }
)

# error is reachable from every non-terminal state
_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.DETECTED: frozenset(
        {
            IncidentStatus.POLICY_BLOCKED,
            IncidentStatus.ANALYZING,
            IncidentStatus.EXECUTING,
            IncidentStatus.FAILED,
            IncidentStatus.ERROR,
        }
    ),
    IncidentStatus.ANALYZING: frozenset(
        {IncidentStatus.EXECUTING, IncidentStatus.FAILED, IncidentStatus.ERROR}
    ),
    IncidentStatus.EXECUTING: frozenset(
        {IncidentStatus.PROTECTED, IncidentStatus.FAILED, IncidentStatus.ERROR}
    ),
}


class AgentStatus(str, Enum):
    RUNNING = "running"
    MOCK = "mock"
    FAILED = "failed"
    STOPPED = "stopped"
    ERROR = "error"


RESTARTABLE_STATUSES = frozenset(
    {AgentStatus.FAILED, AgentStatus.STOPPED, AgentStatus.ERROR}
)


class OpportunityType(str, Enum):
    COOPERATIVE_NETTING = "cooperative_netting"
    BULK_OPTIMIZATION = "bulk_optimization"
    CROSS_CHAIN_ARBITRAGE = "cross_chain_arbitrage"
    PROTOCOL_OPTIMIZATION = "protocol_optimization"


class StrategyType(str, Enum):
    COOPERATIVE_NETTING = "cooperative_netting"
    BULK_OPTIMIZATION = "bulk_optimization"
    CROSS_CHAIN_ARBITRAGE = "cross_chain_arbitrage"
    SEQUENTIAL = "sequential"


class SessionStatus(str, Enum):
    PLANNED = "planned"
    COMPLETED = "completed"
    FAILED = "failed"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Result:
    """Outcome of a stage or collaborator call; returned, never raised."""

    success: bool
    data: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None
    error_kind: ErrorKind | None = None

    @classmethod
    def ok(cls, data: Mapping[str, Any] | None = None, **extra: Any) -> Result:
        payload = dict(data or {})
        payload.update(extra)
        return cls(success=True, data=payload)

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.STAGE_FAILURE,
        data: Mapping[str, Any] | None = None,
    ) -> Result:
        return cls(success=False, data=dict(data or {}), error=error, error_kind=kind)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": dict(self.data)}
        out: dict[str, Any] = {
            "success": False,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }
        if self.data:
            out["data"] = dict(self.data)
        return out


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Position:
    """Collateralized lending position, normalized across chains."""

    position_id: str
    user_id: str
    chain: str
    protocol: str
    collateral_asset: str
    collateral_amount: float
    collateral_value_usd: float
    debt_asset: str
    debt_amount: float
    debt_value_usd: float
    liquidation_threshold: float
    venue: str = ""
    status: str = "active"

    @property
    def health_factor(self) -> float:
        return compute_health_factor(
            self.collateral_value_usd, self.debt_value_usd, self.liquidation_threshold
        )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["health_factor"] = self.health_factor
        return out


@dataclass(frozen=True)
class Policy:
    """User-defined limits the policy guard enforces."""

    policy_id: str
    user_id: str
    auto_protect: bool = True
    max_per_incident_usd: float = 500.0
    max_daily_spend_usd: float = 2000.0
    hf_target: float = 1.5
    hf_critical: float = 1.05
    allowed_venues: tuple[str, ...] = ()
    blocked_venues: tuple[str, ...] = ()
    blocked_assets: tuple[str, ...] = ()


@dataclass(frozen=True)
class Incident:
    """Tracked risk event. Each stage produces a new version."""

    incident_id: str
    position_ids: tuple[str, ...]
    incident_type: str
    severity: Severity
    status: IncidentStatus = IncidentStatus.DETECTED
    detected_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None
    position_value_usd: float = 0.0
    metadata: Mapping[str, Any] = field(default_factory=dict)
    coordination_session_id: str | None = None

    @property
    def position_id(self) -> str:
        return self.position_ids[0]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: IncidentStatus, **metadata: Any) -> Incident:
        """Move to ``status``, merging ``metadata``; terminal states stamp resolved_at."""
        allowed = _TRANSITIONS.get(self.status, frozenset())
        if status not in allowed:
            raise InvalidTransition(
                f"Incident {self.incident_id}: {self.status.value} -> {status.value} not allowed"
            )
        merged = {**self.metadata, **metadata}
        resolved_at = utcnow() if status in TERMINAL_STATUSES else self.resolved_at
        return replace(self, status=status, metadata=merged, resolved_at=resolved_at)

    def with_stage_result(self, stage: str, result: Result) -> Incident:
        stages = dict(self.metadata.get("stage_results", {}))
        stages[stage] = result.to_dict()
        return replace(self, metadata={**self.metadata, "stage_results": stages})

    def with_metadata(self, **metadata: Any) -> Incident:
        return replace(self, metadata={**self.metadata, **metadata})

    def stage_data(self, stage: str) -> Mapping[str, Any]:
        return self.metadata.get("stage_results", {}).get(stage, {}).get("data", {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "position_id": self.position_id,
            "position_ids": list(self.position_ids),
            "incident_type": self.incident_type,
            "severity": self.severity.value,
            "status": self.status.value,
            "detected_at": self.detected_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "position_value_usd": self.position_value_usd,
            "metadata": dict(self.metadata),
            "coordination_session_id": self.coordination_session_id,
        }


@dataclass(frozen=True)
class NettingOpportunity:
    """Coordinated protection opportunity found by a matching scan."""

    type: OpportunityType
    position_ids: tuple[str, ...]
    potential_savings: float
    confidence: float
    netting_amount: float = 0.0
    risk_reduction: float = 0.0
    complexity: float = 0.0
    details: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CoordinationStrategy:
    type: StrategyType
    description: str
    steps: tuple[str, ...]
    estimated_savings: float
    risk_level: str
    position_ids: tuple[str, ...] = ()
    opportunity: NettingOpportunity | None = None


@dataclass(frozen=True)
class CoordinationSession:
    session_id: str
    incident_ids: tuple[str, ...]
    strategy: CoordinationStrategy
    status: SessionStatus = SessionStatus.PLANNED
    created_at: datetime = field(default_factory=utcnow)
    executed_at: datetime | None = None
    execution_results: Mapping[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass(frozen=True)
class AgentHealthEntry:
    """Last known health of a registered agent."""

    name: str
    status: AgentStatus
    last_checked: datetime = field(default_factory=utcnow)
    error: str | None = None
    details: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_healthy(self) -> bool:
        return self.status == AgentStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "last_checked": self.last_checked.isoformat(),
            "error": self.error,
            **dict(self.details),
        }
