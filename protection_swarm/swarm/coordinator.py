"""Swarm facade: agent lifecycle, event ingestion, batch coordination and status."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping, Sequence

from ..config import AppConfig
from ..interfaces.notifier import Notifier
from ..interfaces.repository import Repository
from ..matching import MatchingEngine
from ..models import Incident, IncidentStatus, NettingOpportunity, Result, StrategyType
from .pipeline import IncidentPipeline
from .state import SwarmState
from .supervisor import AgentSpec, Supervisor

logger = logging.getLogger(__name__)


class Swarm:
    """Entry point tying the supervisor, pipeline and matching engine together.

    Usage::

        async with Swarm(config, repository) as swarm:
            result = await swarm.process_risk_event(event)
    """

    def __init__(
        self,
        config: AppConfig,
        repository: Repository,
        agent_specs: Sequence[AgentSpec] | None = None,
        notifiers: Sequence[Notifier] = (),
    ) -> None:
        self._config = config
        self._repository = repository
        self._state = SwarmState()

        if agent_specs is None:
            from ..agents import build_default_agent_specs

            agent_specs = build_default_agent_specs(config, repository, notifiers)

        self._supervisor = Supervisor(
            agent_specs, strict=config.swarm.strict, agent_config=config
        )
        if not any(s.name == MatchingEngine.name for s in agent_specs):
            self._supervisor.register(
                AgentSpec(
                    name=MatchingEngine.name,
                    factory=self._build_matching_engine,
                    required=MatchingEngine.name in config.swarm.required_agents,
                )
            )
        self._pipeline = IncidentPipeline(repository, self._supervisor, self._state)

    def _build_matching_engine(self) -> MatchingEngine:
        return MatchingEngine(
            self._repository,
            self._config.matching,
            actioner_lookup=lambda: self._supervisor.get("actioner"),
        )

    @property
    def supervisor(self) -> Supervisor:
        return self._supervisor

    @property
    def state(self) -> SwarmState:
        return self._state

    @property
    def matching_engine(self) -> MatchingEngine | None:
        return self._supervisor.get(MatchingEngine.name)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all agents; raises AgentUnavailable in strict mode."""
        logger.info("Starting protection swarm (%s mode)", self._config.swarm.mode)
        await self._supervisor.start_all()
        self._state.mark_started()
        logger.info(
            "Protection swarm started: %d/%d agents healthy",
            self._supervisor.healthy_count(),
            self._supervisor.total,
        )

    async def stop(self) -> None:
        await self._supervisor.stop_all()
        self._state.mark_stopped()
        logger.info("Protection swarm stopped")

    async def __aenter__(self) -> Swarm:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Incident processing
    # ------------------------------------------------------------------

    async def process_risk_event(self, event: Mapping[str, Any]) -> Result:
        async with self._state.lock:
            return await self._pipeline.process_risk_event(event)

    async def handle_incident(self, incident: Incident) -> Result:
        async with self._state.lock:
            return await self._pipeline.handle_incident(incident)

    async def process_risk_batch(self, events: Sequence[Mapping[str, Any]]) -> Result:
        """Ingest several events and protect them together when coordination pays off.

        Incidents that pass the policy check and whose positions the chosen
        strategy covers are executed as one coordination session; the rest go
        through the pipeline one by one.
        """
        async with self._state.lock:
            outcomes: dict[int, Result] = {}
            incidents: dict[int, Incident] = {}

            for i, event in enumerate(events):
                ingested = await self._pipeline.try_ingest(event)
                if isinstance(ingested, Result):
                    outcomes[i] = ingested
                else:
                    incidents[i] = ingested

            engine = self.matching_engine
            session_info: dict[str, Any] = {}
            if len(incidents) >= 2 and engine is not None:
                session_info = await self._coordinate(engine, incidents, outcomes)

            for i, incident in incidents.items():
                if i not in outcomes:
                    current = await self._pipeline.current(incident)
                    outcomes[i] = await self._pipeline.handle_incident(current)

            if session_info.get("coordination_type") == StrategyType.SEQUENTIAL.value:
                session_id = session_info["session_id"]
                engine.record_sequential_outcome(
                    session_id,
                    {inc.incident_id: outcomes[i] for i, inc in incidents.items()},
                )
                session_info["savings_realized"] = 0.0
                session_info["session_status"] = engine.get_session(session_id).status.value

            results = [outcomes[i].to_dict() for i in range(len(events))]
            return Result.ok(
                results=results,
                processed=len(incidents),
                protected=sum(
                    1 for r in results if r.get("data", {}).get("status") == "protected"
                ),
                **session_info,
            )

    async def _coordinate(
        self,
        engine: MatchingEngine,
        incidents: dict[int, Incident],
        outcomes: dict[int, Result],
    ) -> dict[str, Any]:
        """Policy-check every incident, then run one session for those it covers."""
        cleared: dict[int, Incident] = {}
        for i, incident in incidents.items():
            result = await self._pipeline.handle_incident(incident, until="policy_check")
            if not result.success:
                outcomes[i] = result
                continue
            cleared[i] = await self._pipeline.current(incident)

        if len(cleared) < 2:
            return {}

        try:
            plan = await engine.coordinate_protection_strategies(
                [inc.incident_id for inc in cleared.values()]
            )
        except Exception as e:
            logger.error("Coordination planning raised: %s", e)
            return {}
        if not plan.success:
            logger.warning("Coordination planning failed: %s", plan.error)
            return {}

        session_id = plan.data["session_id"]
        session = engine.get_session(session_id)
        info = {
            "session_id": session_id,
            "coordination_type": plan.data["coordination_type"],
            "estimated_savings": plan.data["estimated_savings"],
        }
        if session.strategy.type == StrategyType.SEQUENTIAL:
            # closed by the caller once the per-incident runs finish
            return info

        covered = set(session.strategy.position_ids)
        members = {i: inc for i, inc in cleared.items() if inc.position_id in covered}
        for i, incident in list(members.items()):
            try:
                members[i] = await self._pipeline.save(
                    replace(
                        incident.transition(IncidentStatus.EXECUTING),
                        coordination_session_id=session_id,
                    )
                )
            except Exception as e:
                outcomes[i] = await self._pipeline.abort(incident, "coordinated_execution", e)
                del members[i]

        execution = await engine.execute_coordinated_strategy(session_id)
        for i, incident in members.items():
            incident = incident.with_stage_result("coordinated_execution", execution)
            if execution.success:
                incident = incident.transition(IncidentStatus.PROTECTED)
            else:
                incident = incident.transition(
                    IncidentStatus.FAILED,
                    reason=execution.error,
                    failed_stage="coordinated_execution",
                )
            outcomes[i] = await self._pipeline.conclude(
                incident, execution.error, execution.error_kind
            )

        info["coordinated_incidents"] = [inc.incident_id for inc in members.values()]
        info["savings_realized"] = execution.data.get("savings_realized", 0.0)
        info["session_status"] = engine.get_session(session_id).status.value
        return info

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def latest_security_incident(self) -> dict[str, Any] | None:
        incident = self._state.latest_security_incident
        if incident is None:
            incident = await self._repository.latest_incident()
        return incident.to_dict() if incident is not None else None

    async def scan_netting_opportunities(self) -> list[NettingOpportunity]:
        engine = self.matching_engine
        if engine is None:
            logger.warning("Matching coordinator not running; netting scan skipped")
            return []
        async with self._state.lock:
            return await engine.find_netting_opportunities()

    async def status(self) -> dict[str, Any]:
        entries = await self._supervisor.refresh_health()
        return {
            "swarm_status": "running" if self._state.running else "stopped",
            "uptime_seconds": self._state.uptime_seconds,
            "agents": {
                "total": self._supervisor.total,
                "healthy": self._supervisor.healthy_count(),
                "health_details": {name: e.to_dict() for name, e in entries.items()},
            },
            "metrics": self._state.metrics.to_dict(),
        }

    async def run_health_checks(self, interval_seconds: float | None = None) -> None:
        await self._supervisor.run_health_checks(
            interval_seconds or self._config.swarm.health_check_interval_seconds
        )
