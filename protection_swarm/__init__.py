"""Automated incident response for collateralized DeFi positions."""
from .config import AppConfig, load_config
from .models import Incident, IncidentStatus, Position, Result
from .swarm import Swarm

__all__ = [
    "AppConfig",
    "Incident",
    "IncidentStatus",
    "Position",
    "Result",
    "Swarm",
    "load_config",
]

__version__ = "0.1.0"
