"""Reference in-process collaborator agents."""
from __future__ import annotations

from typing import Sequence

from ..config import AppConfig
from ..interfaces.notifier import Notifier
from ..interfaces.repository import Repository
from ..swarm.supervisor import AgentSpec
from .actioner import ActionerAgent
from .base import BaseAgent
from .explainer import ExplainerAgent
from .optimizer import OptimizerAgent
from .policy_guard import PolicyGuardAgent
from .predictor import PredictorAgent
from .reporter import ReporterAgent, format_incident_report

__all__ = [
    "ActionerAgent",
    "BaseAgent",
    "ExplainerAgent",
    "OptimizerAgent",
    "PolicyGuardAgent",
    "PredictorAgent",
    "ReporterAgent",
    "build_default_agent_specs",
    "format_incident_report",
]


def build_default_agent_specs(
    config: AppConfig,
    repository: Repository,
    notifiers: Sequence[Notifier] = (),
) -> list[AgentSpec]:
    """Specs for the six pipeline collaborators, in pipeline order.

    The matching coordinator is registered by the swarm itself.
    """
    required = set(config.swarm.required_agents)
    factories = {
        "policy_guard": lambda: PolicyGuardAgent(
            repository, config.policy_defaults, config.matching
        ),
        "predictor": PredictorAgent,
        "optimizer": lambda: OptimizerAgent(config.policy_defaults),
        "actioner": ActionerAgent,
        "explainer": ExplainerAgent,
        "reporter": lambda: ReporterAgent(notifiers),
    }
    return [
        AgentSpec(name=name, factory=factory, required=name in required)
        for name, factory in factories.items()
    ]
