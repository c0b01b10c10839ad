"""Integration tests for the swarm facade: status, batches and netting scans."""
from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import FakeAgentFactory, make_position
from protection_swarm.agents import build_default_agent_specs
from protection_swarm.config import AppConfig
from protection_swarm.errors import ErrorKind
from protection_swarm.models import AgentStatus, IncidentStatus, Policy, SessionStatus
from protection_swarm.storage import InMemoryRepository
from protection_swarm.swarm import AgentSpec, Swarm


def _cross_chain_repository(*policies: Policy) -> InMemoryRepository:
    return InMemoryRepository(
        positions=[
            make_position("eth", collateral_value_usd=2000.0, debt_value_usd=1500.0,
                          liquidation_threshold=0.8),
            make_position("arb", chain="arbitrum", collateral_value_usd=2000.0,
                          debt_value_usd=1500.0, liquidation_threshold=0.8),
            make_position("base", user_id="carol", chain="base", collateral_value_usd=2000.0,
                          debt_value_usd=1500.0, liquidation_threshold=0.8),
        ],
        policies=policies,
    )


def _event(position_id: str, event_type: str = "liquidation_risk") -> dict:
    return {"position_id": position_id, "event_type": event_type, "severity": "high"}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_status_shape(self, app_config: AppConfig, repository: InMemoryRepository) -> None:
        async with Swarm(app_config, repository) as swarm:
            status = await swarm.status()

        assert status["swarm_status"] == "running"
        assert status["uptime_seconds"] >= 0
        assert status["agents"]["total"] == 7
        assert status["agents"]["healthy"] == 7
        details = status["agents"]["health_details"]
        assert set(details) == {
            "policy_guard", "predictor", "optimizer", "actioner",
            "explainer", "reporter", "matching_coordinator",
        }
        assert details["matching_coordinator"]["status"] == "running"
        assert status["metrics"] == {
            "events_processed": 0,
            "incidents_handled": 0,
            "protections_executed": 0,
        }

    @pytest.mark.asyncio
    async def test_stop_marks_stopped(self, app_config: AppConfig, repository: InMemoryRepository) -> None:
        swarm = Swarm(app_config, repository)
        await swarm.start()
        await swarm.stop()
        status = await swarm.status()
        assert status["swarm_status"] == "stopped"
        assert status["agents"]["healthy"] == 0

    @pytest.mark.asyncio
    async def test_custom_specs_and_restart(self, app_config: AppConfig,
                                            repository: InMemoryRepository) -> None:
        factory = FakeAgentFactory("watcher")
        async with Swarm(app_config, repository,
                         agent_specs=[AgentSpec("watcher", factory)]) as swarm:
            factory.built[0].health_error = RuntimeError("lost connection")
            status = await swarm.status()
            assert status["agents"]["health_details"]["watcher"]["status"] == "error"

            assert await swarm.supervisor.restart_failed_agents() == ["watcher"]
            entries = await swarm.supervisor.refresh_health()
            assert entries["watcher"].status == AgentStatus.RUNNING


class TestLatestSecurityIncident:
    @pytest.mark.asyncio
    async def test_none_before_any_event(self, app_config: AppConfig,
                                         repository: InMemoryRepository) -> None:
        async with Swarm(app_config, repository) as swarm:
            assert await swarm.latest_security_incident() is None

    @pytest.mark.asyncio
    async def test_attack_incident_fills_slot(self, app_config: AppConfig,
                                              repository: InMemoryRepository) -> None:
        async with Swarm(app_config, repository) as swarm:
            await swarm.process_risk_event(_event("pos-1", "flash_loan_attack"))
            await swarm.process_risk_event(_event("pos-1", "rate_change"))
            latest = await swarm.latest_security_incident()

        assert latest["incident_type"] == "flash_loan_attack"
        assert latest["status"] == "protected"

    @pytest.mark.asyncio
    async def test_liquidation_attack_counts_as_attack(
        self, app_config: AppConfig, repository: InMemoryRepository
    ) -> None:
        async with Swarm(app_config, repository) as swarm:
            await swarm.process_risk_event(_event("pos-1", "liquidation_attack"))
            await swarm.process_risk_event(_event("pos-1", "rate_change"))
            latest = await swarm.latest_security_incident()

        assert latest["incident_type"] == "liquidation_attack"

    @pytest.mark.asyncio
    async def test_falls_back_to_repository(self, app_config: AppConfig,
                                            repository: InMemoryRepository) -> None:
        async with Swarm(app_config, repository) as swarm:
            await swarm.process_risk_event(_event("pos-1", "rate_change"))
            latest = await swarm.latest_security_incident()
        assert latest["incident_type"] == "rate_change"


class TestBatch:
    @pytest.mark.asyncio
    async def test_cross_chain_batch_is_coordinated(self, app_config: AppConfig) -> None:
        repository = _cross_chain_repository()
        async with Swarm(app_config, repository) as swarm:
            result = await swarm.process_risk_batch([_event("eth"), _event("arb")])
            status = await swarm.status()

        assert result.success
        assert result.data["coordination_type"] == "cross_chain_arbitrage"
        assert result.data["protected"] == 2
        assert result.data["savings_realized"] == pytest.approx(150.0)
        session_id = result.data["session_id"]
        for outcome in result.data["results"]:
            incident = outcome["data"]["incident"]
            assert incident["status"] == "protected"
            assert incident["coordination_session_id"] == session_id
            assert "coordinated_execution" in incident["metadata"]["stage_results"]
        assert status["metrics"] == {
            "events_processed": 2,
            "incidents_handled": 2,
            "protections_executed": 2,
        }

    @pytest.mark.asyncio
    async def test_policy_blocked_incident_left_out(self, app_config: AppConfig) -> None:
        blocked = Policy(policy_id="p-carol", user_id="carol", auto_protect=False)
        repository = _cross_chain_repository(blocked)
        async with Swarm(app_config, repository) as swarm:
            result = await swarm.process_risk_batch(
                [_event("eth"), _event("arb"), _event("base")]
            )

        statuses = [r.get("data", {}).get("status") for r in result.data["results"]]
        assert statuses == ["protected", "protected", "policy_blocked"]
        blocked_incident = result.data["results"][2]["data"]["incident"]
        assert blocked_incident["coordination_session_id"] is None

    @pytest.mark.asyncio
    async def test_sequential_strategy_runs_pipeline_per_incident(
        self, app_config: AppConfig, netting_repository: InMemoryRepository
    ) -> None:
        # same-protocol pair: protocol optimization outscores netting -> sequential
        async with Swarm(app_config, netting_repository) as swarm:
            result = await swarm.process_risk_batch([_event("risky"), _event("safe")])
            session = swarm.matching_engine.get_session(result.data["session_id"])

        assert result.data["coordination_type"] == "sequential"
        for outcome in result.data["results"]:
            incident = outcome["data"]["incident"]
            assert incident["status"] == "protected"
            assert incident["coordination_session_id"] is None
            assert list(incident["metadata"]["stage_results"])[-1] == "incident_analysis"
        assert result.data["session_status"] == "completed"
        assert result.data["savings_realized"] == 0.0
        assert session.status == SessionStatus.COMPLETED
        assert set(session.execution_results["incidents"].values()) == {True}

    @pytest.mark.asyncio
    async def test_sequential_session_fails_with_its_incidents(
        self, app_config: AppConfig, netting_repository: InMemoryRepository
    ) -> None:
        class _NoOptimizer:
            def __call__(self):
                raise RuntimeError("solver offline")

        specs = [
            replace(s, factory=_NoOptimizer()) if s.name == "optimizer" else s
            for s in build_default_agent_specs(app_config, netting_repository)
        ]
        async with Swarm(app_config, netting_repository, agent_specs=specs) as swarm:
            result = await swarm.process_risk_batch([_event("risky"), _event("safe")])
            session = swarm.matching_engine.get_session(result.data["session_id"])

        assert result.data["coordination_type"] == "sequential"
        assert result.data["protected"] == 0
        assert result.data["session_status"] == "failed"
        assert session.status == SessionStatus.FAILED
        assert session.execution_results["error"] == "2 incident(s) not protected"

    @pytest.mark.asyncio
    async def test_invalid_events_reported_in_place(
        self, app_config: AppConfig, repository: InMemoryRepository
    ) -> None:
        async with Swarm(app_config, repository) as swarm:
            result = await swarm.process_risk_batch([{"severity": "high"}, _event("pos-1")])

        first, second = result.data["results"]
        assert first["success"] is False
        assert first["error_kind"] == ErrorKind.VALIDATION.value
        assert second["data"]["status"] == "protected"
        assert "session_id" not in result.data

    @pytest.mark.asyncio
    async def test_batch_without_matching_engine(
        self, app_config: AppConfig
    ) -> None:
        class _Broken:
            def __call__(self):
                raise RuntimeError("engine offline")

        repository = _cross_chain_repository()
        specs = build_default_agent_specs(app_config, repository)
        specs.append(AgentSpec("matching_coordinator", _Broken()))
        async with Swarm(app_config, repository, agent_specs=specs) as swarm:
            result = await swarm.process_risk_batch([_event("eth"), _event("arb")])

        assert result.data["protected"] == 2
        assert "session_id" not in result.data
        stored = await repository.get_incident(result.data["results"][0]["data"]["incident_id"])
        assert stored.status == IncidentStatus.PROTECTED


class TestNettingScan:
    @pytest.mark.asyncio
    async def test_scan_delegates_to_engine(
        self, app_config: AppConfig, netting_repository: InMemoryRepository
    ) -> None:
        async with Swarm(app_config, netting_repository) as swarm:
            opportunities = await swarm.scan_netting_opportunities()
            status = await swarm.status()

        assert len(opportunities) == 1
        assert opportunities[0].netting_amount == pytest.approx(20000.0)
        assert status["agents"]["health_details"]["matching_coordinator"]["matches_found"] == 1

    @pytest.mark.asyncio
    async def test_scan_without_engine(self, app_config: AppConfig,
                                       netting_repository: InMemoryRepository) -> None:
        swarm = Swarm(app_config, netting_repository)
        assert await swarm.scan_netting_opportunities() == []
