"""Swarm orchestration: supervisor, pipeline and facade."""
from .supervisor import AgentSpec, Supervisor
from .state import ATTACK_INCIDENT_TYPES, SwarmMetrics, SwarmState
from .pipeline import STAGES, IncidentPipeline, build_incident
from .coordinator import Swarm

__all__ = [
    "ATTACK_INCIDENT_TYPES",
    "AgentSpec",
    "IncidentPipeline",
    "STAGES",
    "Supervisor",
    "Swarm",
    "SwarmMetrics",
    "SwarmState",
    "build_incident",
]
