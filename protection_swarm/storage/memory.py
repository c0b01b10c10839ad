"""In-memory repository used by the CLI and tests."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml

from ..models import Incident, Policy, Position

logger = logging.getLogger(__name__)


class InMemoryRepository:
    """Dict-backed implementation of the Repository protocol.

    Incidents keep their first-save order, so the latest incident is the most
    recently created one even after later status updates.
    """

    def __init__(
        self,
        positions: Iterable[Position] = (),
        policies: Iterable[Policy] = (),
    ) -> None:
        self._positions: dict[str, Position] = {p.position_id: p for p in positions}
        self._policies: dict[str, Policy] = {p.user_id: p for p in policies}
        self._incidents: dict[str, Incident] = {}

    # -- positions -----------------------------------------------------

    async def get_position(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    async def save_position(self, position: Position) -> None:
        self._positions[position.position_id] = position

    async def delete_position(self, position_id: str) -> bool:
        return self._positions.pop(position_id, None) is not None

    async def list_positions(self, active_only: bool = True) -> list[Position]:
        positions = list(self._positions.values())
        if active_only:
            positions = [p for p in positions if p.is_active]
        return positions

    # -- incidents -----------------------------------------------------

    async def get_incident(self, incident_id: str) -> Incident | None:
        return self._incidents.get(incident_id)

    async def save_incident(self, incident: Incident) -> None:
        self._incidents[incident.incident_id] = incident
        logger.debug(
            "Incident saved: %s (%s)", incident.incident_id, incident.status.value
        )

    async def latest_incident(self) -> Incident | None:
        if not self._incidents:
            return None
        return next(reversed(self._incidents.values()))

    async def list_incidents(self) -> list[Incident]:
        return list(self._incidents.values())

    # -- policies ------------------------------------------------------

    async def get_policy(self, user_id: str) -> Policy | None:
        return self._policies.get(user_id)

    async def save_policy(self, policy: Policy) -> None:
        self._policies[policy.user_id] = policy


# ---------------------------------------------------------------------------
# YAML seed loading
# ---------------------------------------------------------------------------


def _build_position(raw: dict[str, Any]) -> Position:
    try:
        return Position(
            position_id=str(raw["position_id"]),
            user_id=str(raw.get("user_id", "")),
            chain=str(raw.get("chain", "")),
            protocol=str(raw.get("protocol", "")).lower(),
            venue=str(raw.get("venue", "")),
            collateral_asset=str(raw.get("collateral_asset", "")),
            collateral_amount=float(raw.get("collateral_amount", 0.0)),
            collateral_value_usd=float(raw.get("collateral_value_usd", 0.0)),
            debt_asset=str(raw.get("debt_asset", "")),
            debt_amount=float(raw.get("debt_amount", 0.0)),
            debt_value_usd=float(raw.get("debt_value_usd", 0.0)),
            liquidation_threshold=float(raw.get("liquidation_threshold", 0.85)),
            status=str(raw.get("status", "active")),
        )
    except KeyError as e:
        raise ValueError(f"Position entry missing field {e}") from e


def _build_policy(raw: dict[str, Any]) -> Policy:
    return Policy(
        policy_id=str(raw.get("policy_id", f"policy_{raw['user_id']}")),
        user_id=str(raw["user_id"]),
        auto_protect=bool(raw.get("auto_protect", True)),
        max_per_incident_usd=float(raw.get("max_per_incident_usd", 500.0)),
        max_daily_spend_usd=float(raw.get("max_daily_spend_usd", 2000.0)),
        hf_target=float(raw.get("hf_target", 1.5)),
        hf_critical=float(raw.get("hf_critical", 1.05)),
        allowed_venues=tuple(raw.get("allowed_venues", [])),
        blocked_venues=tuple(raw.get("blocked_venues", [])),
        blocked_assets=tuple(raw.get("blocked_assets", [])),
    )


def load_positions_file(path: str | Path) -> InMemoryRepository:
    """Build a repository from a YAML file with ``positions`` and ``policies`` lists."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Positions file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    positions = [_build_position(p) for p in raw.get("positions", [])]
    policies = [_build_policy(p) for p in raw.get("policies", [])]
    logger.info(
        "Loaded %d positions and %d policies from %s", len(positions), len(policies), path
    )
    return InMemoryRepository(positions=positions, policies=policies)
