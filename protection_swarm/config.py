"""Configuration loader: reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

KNOWN_AGENTS = (
    "policy_guard",
    "predictor",
    "optimizer",
    "actioner",
    "explainer",
    "reporter",
    "matching_coordinator",
)

SWARM_MODES = ("tolerant", "strict")

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SwarmConfig:
    mode: str = "tolerant"
    required_agents: tuple[str, ...] = ("optimizer", "actioner")
    health_check_interval_seconds: int = 60

    @property
    def strict(self) -> bool:
        return self.mode == "strict"


def _default_maturity() -> dict[str, float]:
    return {
        "aave": 0.95,
        "compound": 0.90,
        "makerdao": 0.85,
        "liquity": 0.80,
        "euler": 0.70,
    }


@dataclass(frozen=True)
class MatchingConfig:
    """Heuristic constants for netting and bulk optimization."""

    risky_health_factor: float = 2.0
    safe_collateralization: float = 1.5
    risky_debt_fraction: float = 0.5
    safe_excess_fraction: float = 0.3
    min_netting_usd: float = 100.0
    base_protection_cost_usd: float = 50.0
    size_cost_per_10k_usd: float = 2.0
    coordination_discount_per_position_usd: float = 15.0
    coordinated_cost_floor_ratio: float = 0.6
    bulk_base_cost_usd: float = 75.0
    bulk_per_position_cost_usd: float = 20.0
    bulk_max_collateralization: float = 2.0
    bulk_min_savings_usd: float = 50.0
    max_complexity: float = 0.8
    cross_chain_savings_usd: float = 150.0
    cross_chain_confidence: float = 0.7
    protocol_savings_ratio: float = 0.005
    protocol_min_savings_usd: float = 25.0
    protocol_confidence: float = 0.8
    opportunity_complexity: float = 0.5
    max_sessions: int = 500
    default_protocol_maturity: float = 0.6
    protocol_maturity: dict[str, float] = field(default_factory=_default_maturity)


@dataclass(frozen=True)
class PolicyDefaults:
    auto_protect: bool = True
    max_per_incident_usd: float = 500.0
    max_daily_spend_usd: float = 2000.0
    hf_target: float = 1.5
    hf_critical: float = 1.05


@dataclass(frozen=True)
class DiscordConfig:
    enabled: bool = False
    webhook_url: str = ""
    username: str = "Protection Swarm"


@dataclass(frozen=True)
class NotificationsConfig:
    discord: DiscordConfig = field(default_factory=DiscordConfig)


@dataclass(frozen=True)
class AppConfig:
    swarm: SwarmConfig = field(default_factory=SwarmConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    policy_defaults: PolicyDefaults = field(default_factory=PolicyDefaults)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_swarm(raw: dict[str, Any]) -> SwarmConfig:
    return SwarmConfig(
        mode=str(raw.get("mode", "tolerant")).lower(),
        required_agents=tuple(raw.get("required_agents", SwarmConfig.required_agents)),
        health_check_interval_seconds=int(raw.get("health_check_interval_seconds", 60)),
    )


def _build_matching(raw: dict[str, Any]) -> MatchingConfig:
    defaults = MatchingConfig()
    values: dict[str, Any] = {}
    for name in MatchingConfig.__dataclass_fields__:
        if name == "protocol_maturity":
            continue
        default = getattr(defaults, name)
        values[name] = type(default)(raw.get(name, default))

    maturity = _default_maturity()
    maturity.update(
        {str(k).lower(): float(v) for k, v in raw.get("protocol_maturity", {}).items()}
    )
    return MatchingConfig(protocol_maturity=maturity, **values)


def _build_policy_defaults(raw: dict[str, Any]) -> PolicyDefaults:
    return PolicyDefaults(
        auto_protect=bool(raw.get("auto_protect", True)),
        max_per_incident_usd=float(raw.get("max_per_incident_usd", 500.0)),
        max_daily_spend_usd=float(raw.get("max_daily_spend_usd", 2000.0)),
        hf_target=float(raw.get("hf_target", 1.5)),
        hf_critical=float(raw.get("hf_critical", 1.05)),
    )


def _build_notifications(raw: dict[str, Any]) -> NotificationsConfig:
    dc = raw.get("discord", {})
    return NotificationsConfig(
        discord=DiscordConfig(
            enabled=bool(dc.get("enabled", False)),
            webhook_url=dc.get("webhook_url", ""),
            username=dc.get("username", DiscordConfig.username),
        )
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (two levels up from this file).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        swarm=_build_swarm(raw.get("swarm", {})),
        matching=_build_matching(raw.get("matching", {})),
        policy_defaults=_build_policy_defaults(raw.get("policy_defaults", {})),
        notifications=_build_notifications(raw.get("notifications", {})),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if cfg.swarm.mode not in SWARM_MODES:
        raise ValueError(
            f"Unknown swarm mode '{cfg.swarm.mode}' (expected one of {', '.join(SWARM_MODES)})"
        )

    for name in cfg.swarm.required_agents:
        if name not in KNOWN_AGENTS:
            raise ValueError(f"Required agent '{name}' is not a known agent")

    if cfg.swarm.health_check_interval_seconds <= 0:
        raise ValueError("health_check_interval_seconds must be positive")

    for protocol, score in cfg.matching.protocol_maturity.items():
        if not 0.0 <= score <= 1.0:
            raise ValueError(
                f"Protocol maturity for '{protocol}' must be within [0, 1], got {score}"
            )

    if cfg.matching.max_sessions < 1:
        raise ValueError("matching.max_sessions must be at least 1")

    if cfg.notifications.discord.enabled and not cfg.notifications.discord.webhook_url:
        raise ValueError("Discord notifications enabled but no webhook_url configured")
