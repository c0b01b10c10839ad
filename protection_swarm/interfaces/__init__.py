"""Protocol interfaces for the protection swarm."""
from .agent import Agent
from .collaborators import (
    Actioner,
    Explainer,
    IncidentReporter,
    Optimizer,
    PolicyValidator,
    Predictor,
)
from .notifier import Notifier
from .repository import Repository

__all__ = [
    "Actioner",
    "Agent",
    "Explainer",
    "IncidentReporter",
    "Notifier",
    "Optimizer",
    "PolicyValidator",
    "Predictor",
    "Repository",
]
