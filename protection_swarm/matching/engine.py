"""Cross-position netting and coordinated protection strategies."""
from __future__ import annotations

import logging
import math
import time
import uuid
from collections import defaultdict
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Sequence

from ..config import MatchingConfig
from ..errors import ErrorKind
from ..interfaces.collaborators import Actioner
from ..interfaces.repository import Repository
from ..models import (
    AgentHealthEntry,
    AgentStatus,
    CoordinationSession,
    CoordinationStrategy,
    NettingOpportunity,
    OpportunityType,
    Position,
    Result,
    SessionStatus,
    StrategyType,
    compute_health_factor,
    utcnow,
)
from . import costs

logger = logging.getLogger(__name__)

GroupKey = tuple[str, str, str, str]

_STRATEGY_TEMPLATES: dict[StrategyType, tuple[str, tuple[str, ...], str]] = {
    StrategyType.COOPERATIVE_NETTING: (
        "Net opposing positions to reduce capital requirements",
        (
            "Identify netting pairs",
            "Calculate optimal netting amounts",
            "Execute coordinated transactions",
            "Monitor resulting positions",
        ),
        "low",
    ),
    StrategyType.BULK_OPTIMIZATION: (
        "Optimize multiple positions simultaneously for cost efficiency",
        (
            "Aggregate position requirements",
            "Optimize transaction batching",
            "Execute bulk transactions",
            "Distribute results to positions",
        ),
        "medium",
    ),
    StrategyType.CROSS_CHAIN_ARBITRAGE: (
        "Leverage cross-chain price differences for protection",
        (
            "Identify arbitrage opportunities",
            "Execute cross-chain transactions",
            "Rebalance positions optimally",
            "Monitor cross-chain execution",
        ),
        "high",
    ),
    StrategyType.SEQUENTIAL: (
        "Protect positions sequentially with priority ordering",
        (
            "Prioritize positions by risk",
            "Execute protection sequentially",
            "Monitor execution results",
            "Adjust strategy if needed",
        ),
        "low",
    ),
}

_OPPORTUNITY_TO_STRATEGY = {
    OpportunityType.COOPERATIVE_NETTING: StrategyType.COOPERATIVE_NETTING,
    OpportunityType.BULK_OPTIMIZATION: StrategyType.BULK_OPTIMIZATION,
    OpportunityType.CROSS_CHAIN_ARBITRAGE: StrategyType.CROSS_CHAIN_ARBITRAGE,
}


def group_positions_for_netting(
    positions: Iterable[Position],
) -> dict[GroupKey, list[Position]]:
    """Partition by (collateral asset, debt asset, protocol, chain)."""
    groups: dict[GroupKey, list[Position]] = defaultdict(list)
    for position in positions:
        key = (
            position.collateral_asset,
            position.debt_asset,
            position.protocol,
            position.chain,
        )
        groups[key].append(position)
    return dict(groups)


class MatchingEngine:
    """Finds and executes coordinated protection across positions.

    The engine is registered with the supervisor like any other agent, so it
    exposes ``start`` / ``stop`` / ``health`` alongside the matching API.
    """

    name = "matching_coordinator"

    def __init__(
        self,
        repository: Repository,
        config: MatchingConfig | None = None,
        actioner_lookup: Callable[[], Actioner | None] | None = None,
    ) -> None:
        self._repository = repository
        self._cfg = config or MatchingConfig()
        self._actioner_lookup = actioner_lookup or (lambda: None)
        self._running = False
        self._sessions: dict[str, CoordinationSession] = {}
        self.netting_opportunities: list[NettingOpportunity] = []
        self.matches_found = 0
        self.coordinated_protections = 0
        self.capital_saved = 0.0
        self.last_scan_time = None

    # ------------------------------------------------------------------
    # Agent lifecycle
    # ------------------------------------------------------------------

    async def start(self, config: Any = None) -> AgentHealthEntry:
        self._running = True
        logger.info("Matching coordinator started")
        return await self.health()

    async def stop(self) -> None:
        self._running = False
        logger.info("Matching coordinator stopped")

    async def health(self) -> AgentHealthEntry:
        return AgentHealthEntry(
            name=self.name,
            status=AgentStatus.RUNNING if self._running else AgentStatus.STOPPED,
            details={
                "active_opportunities": len(self.netting_opportunities),
                "coordination_sessions": len(self._sessions),
                "matches_found": self.matches_found,
                "coordinated_protections": self.coordinated_protections,
                "capital_saved": self.capital_saved,
            },
        )

    # ------------------------------------------------------------------
    # Pairwise and bulk analysis
    # ------------------------------------------------------------------

    def analyze_position_netting(
        self, risky: Position, safe: Position
    ) -> NettingOpportunity | None:
        """Return a netting opportunity for the pair, or None if not viable."""
        if (
            risky.collateral_asset != safe.collateral_asset
            or risky.debt_asset != safe.debt_asset
            or risky.protocol != safe.protocol
            or risky.chain != safe.chain
        ):
            return None

        amount = costs.netting_amount(risky, safe, self._cfg)
        if amount < self._cfg.min_netting_usd:
            return None

        pair = [risky, safe]
        savings = costs.total_individual_cost(pair, self._cfg) - costs.coordinated_protection_cost(
            pair, self._cfg
        )
        new_health = compute_health_factor(
            risky.collateral_value_usd,
            risky.debt_value_usd - amount,
            risky.liquidation_threshold,
        )

        return NettingOpportunity(
            type=OpportunityType.COOPERATIVE_NETTING,
            position_ids=(risky.position_id, safe.position_id),
            netting_amount=amount,
            potential_savings=savings,
            confidence=costs.netting_confidence(risky, safe, amount, self._cfg),
            risk_reduction=new_health - risky.health_factor,
            complexity=costs.coordination_complexity(pair),
            details={
                "risky_user": risky.user_id,
                "safe_user": safe.user_id,
                "new_risky_health": new_health,
            },
        )

    def analyze_bulk_optimization(
        self, positions: Sequence[Position]
    ) -> NettingOpportunity | None:
        """Evaluate a group for bulk protection; ``details['viable']`` holds the verdict."""
        if len(positions) < 3:
            return None

        total_collateral = sum(p.collateral_value_usd for p in positions)
        total_debt = sum(p.debt_value_usd for p in positions)
        if total_debt <= 0:
            return None

        average_collateralization = total_collateral / total_debt
        if average_collateralization > self._cfg.bulk_max_collateralization:
            return None

        savings = costs.total_individual_cost(positions, self._cfg) - costs.bulk_protection_cost(
            positions, self._cfg
        )
        complexity = costs.coordination_complexity(positions)
        viable = savings > self._cfg.bulk_min_savings_usd and complexity < self._cfg.max_complexity

        return NettingOpportunity(
            type=OpportunityType.BULK_OPTIMIZATION,
            position_ids=tuple(p.position_id for p in positions),
            potential_savings=savings,
            confidence=1.0 - complexity,
            complexity=complexity,
            details={
                "viable": viable,
                "position_count": len(positions),
                "total_value": total_collateral,
                "total_debt": total_debt,
                "average_collateralization": average_collateralization,
            },
        )

    def find_group_netting_opportunities(
        self, positions: Sequence[Position]
    ) -> list[NettingOpportunity]:
        """Pair every at-risk position with each healthier one, then try bulk."""
        opportunities: list[NettingOpportunity] = []
        ordered = sorted(positions, key=lambda p: p.health_factor)

        for i, risky in enumerate(ordered):
            if risky.health_factor > self._cfg.risky_health_factor:
                continue
            for safe in ordered[i + 1:]:
                opportunity = self.analyze_position_netting(risky, safe)
                if opportunity is not None:
                    opportunities.append(opportunity)

        bulk = self.analyze_bulk_optimization(ordered)
        if bulk is not None and bulk.details["viable"]:
            opportunities.append(bulk)

        return opportunities

    def _scan(self, positions: Sequence[Position]) -> list[NettingOpportunity]:
        opportunities: list[NettingOpportunity] = []
        for group in group_positions_for_netting(positions).values():
            if len(group) >= 2:
                opportunities.extend(self.find_group_netting_opportunities(group))
        return opportunities

    async def find_netting_opportunities(self) -> list[NettingOpportunity]:
        """Scan all active positions in the repository."""
        positions = await self._repository.list_positions(active_only=True)
        if len(positions) < 2:
            logger.info("Not enough positions for netting analysis")
            return []

        opportunities = self._scan(positions)
        self.netting_opportunities = opportunities
        self.matches_found += len(opportunities)
        self.last_scan_time = utcnow()

        logger.info("Found %d netting opportunities", len(opportunities))
        for opp in opportunities:
            logger.info(
                "Netting opportunity: %s %s, potential savings $%.2f",
                opp.type.value,
                ",".join(opp.position_ids),
                opp.potential_savings,
            )
        return opportunities

    # ------------------------------------------------------------------
    # Multi-incident coordination
    # ------------------------------------------------------------------

    def _analyze_cross_chain(self, positions: Sequence[Position]) -> NettingOpportunity | None:
        chains = {p.chain for p in positions}
        if len(chains) < 2:
            return None
        return NettingOpportunity(
            type=OpportunityType.CROSS_CHAIN_ARBITRAGE,
            position_ids=tuple(p.position_id for p in positions),
            potential_savings=self._cfg.cross_chain_savings_usd,
            confidence=self._cfg.cross_chain_confidence,
            complexity=self._cfg.opportunity_complexity,
            details={"chains_involved": len(chains)},
        )

    def _analyze_protocol(
        self, protocol: str, positions: Sequence[Position]
    ) -> NettingOpportunity | None:
        if len(positions) < 2:
            return None
        total_value = sum(p.collateral_value_usd for p in positions)
        savings = total_value * self._cfg.protocol_savings_ratio
        if savings <= self._cfg.protocol_min_savings_usd:
            return None
        return NettingOpportunity(
            type=OpportunityType.PROTOCOL_OPTIMIZATION,
            position_ids=tuple(p.position_id for p in positions),
            potential_savings=savings,
            confidence=self._cfg.protocol_confidence,
            complexity=self._cfg.opportunity_complexity,
            details={"protocol": protocol, "position_count": len(positions)},
        )

    def analyze_coordination_opportunities(
        self, positions: Sequence[Position]
    ) -> list[NettingOpportunity]:
        """Every opportunity type available to this set of positions."""
        opportunities = self._scan(positions)

        cross_chain = self._analyze_cross_chain(positions)
        if cross_chain is not None:
            opportunities.append(cross_chain)

        by_protocol: dict[str, list[Position]] = defaultdict(list)
        for p in positions:
            by_protocol[p.protocol].append(p)
        for protocol, group in by_protocol.items():
            opp = self._analyze_protocol(protocol, group)
            if opp is not None:
                opportunities.append(opp)

        return opportunities

    @staticmethod
    def select_best_coordination(
        opportunities: Sequence[NettingOpportunity],
    ) -> NettingOpportunity | None:
        """Highest-scoring opportunity, or None when nothing scores above zero."""
        best: NettingOpportunity | None = None
        best_score = 0.0
        for opp in opportunities:
            score = costs.coordination_score(opp)
            if math.isfinite(score) and score > best_score:
                best, best_score = opp, score
        return best

    def generate_coordinated_strategy(
        self,
        positions: Sequence[Position],
        coordination_analysis: Sequence[NettingOpportunity],
    ) -> CoordinationStrategy:
        best = self.select_best_coordination(coordination_analysis)
        strategy_type = (
            _OPPORTUNITY_TO_STRATEGY.get(best.type, StrategyType.SEQUENTIAL)
            if best is not None
            else StrategyType.SEQUENTIAL
        )

        description, steps, risk_level = _STRATEGY_TEMPLATES[strategy_type]
        if strategy_type == StrategyType.SEQUENTIAL:
            ordered = sorted(positions, key=lambda p: p.health_factor)
            return CoordinationStrategy(
                type=strategy_type,
                description=description,
                steps=steps,
                estimated_savings=0.0,
                risk_level=risk_level,
                position_ids=tuple(p.position_id for p in ordered),
            )

        return CoordinationStrategy(
            type=strategy_type,
            description=description,
            steps=steps,
            estimated_savings=best.potential_savings,
            risk_level=risk_level,
            position_ids=best.position_ids,
            opportunity=best,
        )

    async def coordinate_protection_strategies(
        self, incident_ids: Sequence[str]
    ) -> Result:
        """Plan a coordination session for the given incidents."""
        incidents = [await self._repository.get_incident(i) for i in incident_ids]
        incidents = [i for i in incidents if i is not None]
        if not incidents:
            return Result.fail("No valid incidents found", kind=ErrorKind.NOT_FOUND)

        positions: dict[str, Position] = {}
        for incident in incidents:
            for position_id in incident.position_ids:
                position = await self._repository.get_position(position_id)
                if position is not None:
                    positions[position_id] = position

        position_list = list(positions.values())
        analysis = self.analyze_coordination_opportunities(position_list)
        strategy = self.generate_coordinated_strategy(position_list, analysis)

        session = CoordinationSession(
            session_id=f"coord_{uuid.uuid4().hex[:8]}",
            incident_ids=tuple(i.incident_id for i in incidents),
            strategy=strategy,
        )
        self._sessions[session.session_id] = session
        self._prune_sessions()

        logger.info(
            "Coordination strategy generated: %s (estimated savings $%.2f)",
            strategy.type.value,
            strategy.estimated_savings,
        )
        return Result.ok(
            session_id=session.session_id,
            coordination_type=strategy.type.value,
            estimated_savings=strategy.estimated_savings,
            opportunities_considered=len(analysis),
        )

    def get_session(self, session_id: str) -> CoordinationSession | None:
        return self._sessions.get(session_id)

    def _prune_sessions(self) -> None:
        """Keep at most ``max_sessions``, dropping the oldest finished sessions first."""
        excess = len(self._sessions) - self._cfg.max_sessions
        if excess <= 0:
            return
        finished = [
            sid for sid, s in self._sessions.items() if s.status != SessionStatus.PLANNED
        ]
        done = set(finished)
        planned = [sid for sid in self._sessions if sid not in done]
        for session_id in (finished + planned)[:excess]:
            del self._sessions[session_id]
        logger.debug("Pruned %d coordination session(s)", excess)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_coordinated_strategy(self, session_id: str) -> Result:
        session = self._sessions.get(session_id)
        if session is None:
            return Result.fail(
                f"Coordination session not found: {session_id}", kind=ErrorKind.NOT_FOUND
            )

        strategy = session.strategy
        logger.info("Executing coordinated strategy: %s", strategy.type.value)

        executors = {
            StrategyType.COOPERATIVE_NETTING: self.execute_cooperative_netting,
            StrategyType.BULK_OPTIMIZATION: self.execute_bulk_optimization,
            StrategyType.CROSS_CHAIN_ARBITRAGE: self.execute_cross_chain_arbitrage,
        }
        executor = executors.get(strategy.type, self.execute_sequential_protection)

        try:
            outcome = await executor(strategy)
        except Exception as e:
            logger.error("Coordinated strategy %s failed: %s", session_id, e)
            self._sessions[session_id] = replace(
                session, status=SessionStatus.ERROR, executed_at=utcnow(), error=str(e)
            )
            return Result.fail(str(e), kind=ErrorKind.UNEXPECTED, data={"session_id": session_id})

        status = SessionStatus.COMPLETED if outcome["success"] else SessionStatus.FAILED
        self._sessions[session_id] = replace(
            session, status=status, executed_at=utcnow(), execution_results=outcome
        )

        if outcome["success"]:
            self.coordinated_protections += 1
            self.capital_saved += outcome["savings_realized"]
            logger.info(
                "Coordinated strategy %s completed, saved $%.2f",
                session_id,
                outcome["savings_realized"],
            )
            return Result.ok(outcome, session_id=session_id)

        logger.warning("Coordinated strategy %s failed: %s", session_id, outcome.get("error"))
        return Result.fail(
            outcome.get("error") or "Coordinated execution failed",
            data={**outcome, "session_id": session_id},
        )

    def record_sequential_outcome(
        self, session_id: str, incident_results: Mapping[str, Result]
    ) -> Result:
        """Close a sequential session from the pipeline runs of its incidents."""
        session = self._sessions.get(session_id)
        if session is None:
            return Result.fail(
                f"Coordination session not found: {session_id}", kind=ErrorKind.NOT_FOUND
            )
        if session.strategy.type != StrategyType.SEQUENTIAL:
            return Result.fail(
                f"Session {session_id} is {session.strategy.type.value}, not sequential",
                kind=ErrorKind.VALIDATION,
            )

        failed = [
            i for i in session.incident_ids
            if i not in incident_results or not incident_results[i].success
        ]
        outcome = {
            "success": not failed,
            "execution_type": StrategyType.SEQUENTIAL.value,
            "positions": list(session.strategy.position_ids),
            "incidents": {
                i: r.success for i, r in incident_results.items() if i in session.incident_ids
            },
            "savings_realized": 0.0,
            "error": f"{len(failed)} incident(s) not protected" if failed else None,
        }
        status = SessionStatus.FAILED if failed else SessionStatus.COMPLETED
        self._sessions[session_id] = replace(
            session, status=status, executed_at=utcnow(), execution_results=outcome
        )

        if failed:
            logger.warning("Sequential session %s failed: %s", session_id, outcome["error"])
            return Result.fail(outcome["error"], data={**outcome, "session_id": session_id})
        self.coordinated_protections += 1
        logger.info("Sequential session %s completed", session_id)
        return Result.ok(outcome, session_id=session_id)

    async def _dispatch(
        self,
        strategy: CoordinationStrategy,
        plans: Mapping[str, Mapping[str, Any]],
        savings: float,
    ) -> dict[str, Any]:
        """Hand each position's plan to the actioner and time the whole batch."""
        started = time.perf_counter()
        actioner = self._actioner_lookup()
        transactions: list[str] = []
        error: str | None = None

        if actioner is None:
            logger.info("No actioner running; %s recorded as simulated", strategy.type.value)
        else:
            for position_id, plan in plans.items():
                position = await self._repository.get_position(position_id)
                if position is None:
                    error = f"Position not found: {position_id}"
                    break
                result = await actioner.execute_plan(plan, position)
                if not result.success:
                    error = f"{position_id}: {result.error}"
                    break
                transactions.append(str(result.data.get("tx_id", "")))

        success = error is None
        return {
            "success": success,
            "execution_type": strategy.type.value,
            "positions": list(plans),
            "transactions": transactions,
            "savings_realized": savings if success else 0.0,
            "execution_time": round(time.perf_counter() - started, 6),
            "simulated": actioner is None,
            "error": error,
        }

    async def execute_cooperative_netting(self, strategy: CoordinationStrategy) -> dict[str, Any]:
        opp = strategy.opportunity
        risky_id, safe_id = strategy.position_ids[:2]
        amount = opp.netting_amount if opp else 0.0
        plans = {
            risky_id: {
                "strategy": strategy.type.value,
                "actions": [{"type": "receive_netting", "counterparty": safe_id, "amount_usd": amount}],
            },
            safe_id: {
                "strategy": strategy.type.value,
                "actions": [{"type": "provide_netting", "counterparty": risky_id, "amount_usd": amount}],
            },
        }
        return await self._dispatch(strategy, plans, strategy.estimated_savings)

    async def execute_bulk_optimization(self, strategy: CoordinationStrategy) -> dict[str, Any]:
        batch_id = f"batch_{uuid.uuid4().hex[:8]}"
        plans = {
            pid: {
                "strategy": strategy.type.value,
                "batch_id": batch_id,
                "actions": [{"type": "batched_protection"}],
            }
            for pid in strategy.position_ids
        }
        return await self._dispatch(strategy, plans, strategy.estimated_savings)

    async def execute_cross_chain_arbitrage(self, strategy: CoordinationStrategy) -> dict[str, Any]:
        plans = {
            pid: {"strategy": strategy.type.value, "actions": [{"type": "cross_chain_rebalance"}]}
            for pid in strategy.position_ids
        }
        return await self._dispatch(strategy, plans, strategy.estimated_savings)

    async def execute_sequential_protection(self, strategy: CoordinationStrategy) -> dict[str, Any]:
        plans = {
            pid: {"strategy": StrategyType.SEQUENTIAL.value, "actions": [{"type": "protect"}]}
            for pid in strategy.position_ids
        }
        return await self._dispatch(strategy, plans, 0.0)
