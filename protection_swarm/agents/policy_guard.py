"""Policy guard: checks an incident response against the owner's limits."""
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Any

from ..config import MatchingConfig, PolicyDefaults
from ..errors import PolicyViolation
from ..interfaces.repository import Repository
from ..matching.costs import individual_protection_cost
from ..models import Incident, Policy, Position, Result, utcnow
from .base import BaseAgent

logger = logging.getLogger(__name__)


class PolicyGuardAgent(BaseAgent):
    """Blocks responses the position owner has not authorised.

    Approved responses reserve their estimated cost against the owner's
    daily budget until the pipeline releases a response that did not go
    through. The budget resets at UTC midnight.
    """

    name = "policy_guard"

    def __init__(
        self,
        repository: Repository,
        defaults: PolicyDefaults | None = None,
        matching: MatchingConfig | None = None,
    ) -> None:
        super().__init__()
        self._repository = repository
        self._defaults = defaults or PolicyDefaults()
        self._matching = matching or MatchingConfig()
        self._spend_day: date | None = None
        self._spent: dict[str, float] = defaultdict(float)
        self.validations = 0
        self.violations = 0

    def _health_details(self) -> dict[str, Any]:
        return {"validations": self.validations, "violations": self.violations}

    def _default_policy(self, user_id: str) -> Policy:
        d = self._defaults
        return Policy(
            policy_id=f"default_{user_id}",
            user_id=user_id,
            auto_protect=d.auto_protect,
            max_per_incident_usd=d.max_per_incident_usd,
            max_daily_spend_usd=d.max_daily_spend_usd,
            hf_target=d.hf_target,
            hf_critical=d.hf_critical,
        )

    async def policy_for(self, user_id: str) -> Policy:
        return await self._repository.get_policy(user_id) or self._default_policy(user_id)

    def _spent_today(self, user_id: str) -> float:
        today = utcnow().date()
        if self._spend_day != today:
            self._spend_day = today
            self._spent.clear()
        return self._spent[user_id]

    @staticmethod
    def _violation(policy: Policy, position: Position, estimated_cost: float) -> str | None:
        if not policy.auto_protect:
            return "Automatic protection disabled by policy"
        if position.venue and position.venue in policy.blocked_venues:
            return f"Venue '{position.venue}' is blocked by policy"
        if policy.allowed_venues and position.venue not in policy.allowed_venues:
            return f"Venue '{position.venue}' is not in the allowed venues"
        for asset in (position.collateral_asset, position.debt_asset):
            if asset in policy.blocked_assets:
                return f"Asset '{asset}' is blocked by policy"
        if estimated_cost > policy.max_per_incident_usd:
            return (
                f"Estimated cost ${estimated_cost:,.2f} exceeds per-incident limit "
                f"${policy.max_per_incident_usd:,.2f}"
            )
        return None

    async def validate_incident(self, incident: Incident, position: Position) -> Result:
        self.validations += 1
        policy = await self.policy_for(position.user_id)
        estimated_cost = individual_protection_cost(position, self._matching)

        reason = self._violation(policy, position, estimated_cost)
        if reason is None:
            spent = self._spent_today(position.user_id)
            if spent + estimated_cost > policy.max_daily_spend_usd:
                reason = (
                    f"Daily spend limit ${policy.max_daily_spend_usd:,.2f} reached "
                    f"(${spent:,.2f} already committed)"
                )

        if reason is not None:
            self.violations += 1
            violation = PolicyViolation(reason)
            logger.warning("Incident %s blocked: %s", incident.incident_id, violation)
            return Result.fail(
                str(violation),
                kind=violation.kind,
                data={"allowed": False, "reason": reason, "policy_id": policy.policy_id},
            )

        self._spent[position.user_id] += estimated_cost
        return Result.ok(
            allowed=True,
            reason="Within policy limits",
            policy_id=policy.policy_id,
            user_id=position.user_id,
            estimated_cost=estimated_cost,
            hf_target=policy.hf_target,
        )

    def release(self, user_id: str, amount_usd: float) -> None:
        """Return a reservation to today's budget; yesterday's reservations are already gone."""
        spent = self._spent_today(user_id)
        self._spent[user_id] = max(spent - amount_usd, 0.0)
        logger.debug("Released $%.2f of %s's daily budget", amount_usd, user_id)
