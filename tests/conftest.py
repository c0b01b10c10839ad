"""Shared test fixtures and sample data."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any

import pytest

from protection_swarm.config import AppConfig, MatchingConfig, PolicyDefaults, SwarmConfig
from protection_swarm.models import AgentHealthEntry, AgentStatus, Policy, Position
from protection_swarm.storage import InMemoryRepository


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture()
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture()
def strict_config() -> AppConfig:
    return AppConfig(swarm=SwarmConfig(mode="strict"))


@pytest.fixture()
def policy_defaults() -> PolicyDefaults:
    return PolicyDefaults()


# ---------------------------------------------------------------------------
# Position fixtures
# ---------------------------------------------------------------------------


def make_position(position_id: str = "pos-1", **overrides: Any) -> Position:
    fields: dict[str, Any] = {
        "position_id": position_id,
        "user_id": "alice",
        "chain": "ethereum",
        "protocol": "aave",
        "venue": "aave-v3",
        "collateral_asset": "ETH",
        "collateral_amount": 20.0,
        "collateral_value_usd": 50000.0,
        "debt_asset": "USDC",
        "debt_amount": 42000.0,
        "debt_value_usd": 42000.0,
        "liquidation_threshold": 0.97,
    }
    fields.update(overrides)
    return Position(**fields)


@pytest.fixture()
def position() -> Position:
    """Health factor 50000 * 0.97 / 42000 ≈ 1.155."""
    return make_position()


@pytest.fixture()
def risky_position() -> Position:
    """Health factor 52500 * 0.8 / 40000 = 1.05."""
    return make_position(
        "risky",
        user_id="alice",
        collateral_value_usd=52500.0,
        debt_amount=40000.0,
        debt_value_usd=40000.0,
        liquidation_threshold=0.8,
    )


@pytest.fixture()
def safe_position() -> Position:
    """Health factor 200000 * 0.8 / 50000 = 3.2."""
    return make_position(
        "safe",
        user_id="bob",
        collateral_amount=80.0,
        collateral_value_usd=200000.0,
        debt_amount=50000.0,
        debt_value_usd=50000.0,
        liquidation_threshold=0.8,
    )


@pytest.fixture()
def repository(position: Position) -> InMemoryRepository:
    return InMemoryRepository(positions=[position])


@pytest.fixture()
def netting_repository(
    risky_position: Position, safe_position: Position
) -> InMemoryRepository:
    return InMemoryRepository(positions=[risky_position, safe_position])


@pytest.fixture()
def restrictive_policy() -> Policy:
    return Policy(policy_id="p-alice", user_id="alice", auto_protect=False)


# ---------------------------------------------------------------------------
# Fake agents
# ---------------------------------------------------------------------------


class FakeAgent:
    """Minimal Agent implementation with scriptable start and health."""

    def __init__(
        self,
        name: str,
        fail_start: bool = False,
        health_status: AgentStatus = AgentStatus.RUNNING,
        health_error: Exception | None = None,
    ) -> None:
        self._name = name
        self.fail_start = fail_start
        self.health_status = health_status
        self.health_error = health_error
        self.started = False
        self.stopped = False

    @property
    def name(self) -> str:
        return self._name

    async def start(self, config: Any = None) -> AgentHealthEntry:
        if self.fail_start:
            raise RuntimeError(f"{self._name} cannot start")
        self.started = True
        return AgentHealthEntry(name=self._name, status=AgentStatus.RUNNING)

    async def stop(self) -> None:
        self.stopped = True

    async def health(self) -> AgentHealthEntry:
        if self.health_error is not None:
            raise self.health_error
        return AgentHealthEntry(name=self._name, status=self.health_status)


class FakeAgentFactory:
    """Builds a fresh FakeAgent per call and keeps every instance built."""

    def __init__(self, name: str, **kwargs: Any) -> None:
        self.name = name
        self.kwargs = kwargs
        self.built: list[FakeAgent] = []

    def __call__(self) -> FakeAgent:
        agent = FakeAgent(self.name, **self.kwargs)
        self.built.append(agent)
        return agent


# ---------------------------------------------------------------------------
# Sample transactions
# ---------------------------------------------------------------------------


@pytest.fixture()
def flash_loan_tx() -> dict:
    return {
        "hash": "0xflash",
        "borrow_amount": 5_000_000,
        "protocol_interactions": ["aave", "uniswap", "curve"],
        "price_impact": 0.08,
        "arbitrage_pattern": True,
        "internal_calls": 25,
    }


@pytest.fixture()
def sandwich_window() -> list[dict]:
    return [
        {"hash": "0x1", "from": "0xattacker", "trade_direction": "buy", "amount": 100.0,
         "gas_price": 200, "average_gas_price": 50},
        {"hash": "0x2", "from": "0xvictim", "trade_direction": "buy", "amount": 10.0,
         "gas_price": 50, "average_gas_price": 50},
        {"hash": "0x3", "from": "0xattacker", "trade_direction": "sell", "amount": 105.0,
         "gas_price": 200, "average_gas_price": 50},
    ]


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    swarm:
      mode: strict
      required_agents: [optimizer]
      health_check_interval_seconds: 30
    matching:
      min_netting_usd: 250
      protocol_maturity:
        aave: 0.9
        newlend: 0.4
    policy_defaults:
      max_per_incident_usd: 750
      hf_target: 1.6
    notifications:
      discord:
        enabled: true
        webhook_url: "https://discord.example.com/api/webhooks/1/abc"
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file


POSITIONS_YAML = textwrap.dedent("""\
    positions:
      - position_id: risky
        user_id: alice
        chain: ethereum
        protocol: Aave
        collateral_asset: ETH
        collateral_value_usd: 52500
        debt_asset: USDC
        debt_value_usd: 40000
        liquidation_threshold: 0.8
      - position_id: closed
        user_id: carol
        chain: ethereum
        protocol: aave
        collateral_asset: ETH
        collateral_value_usd: 1000
        debt_asset: USDC
        debt_value_usd: 0
        liquidation_threshold: 0.8
        status: closed
    policies:
      - user_id: alice
        max_per_incident_usd: 100
        blocked_venues: [sketchy-dex]
""")


@pytest.fixture()
def positions_yaml_path(tmp_path: Path) -> Path:
    path = tmp_path / "positions.yaml"
    path.write_text(POSITIONS_YAML)
    return path
