"""Collaborator protocols: the calls each pipeline stage makes.

Every call returns a :class:`~protection_swarm.models.Result`; a collaborator
signals refusal through ``success=False`` rather than raising.
"""
from typing import Any, Mapping, Protocol

from ..models import Incident, Position, Result


class PolicyValidator(Protocol):
    """``data`` carries ``allowed`` and ``reason``.

    An approval may reserve ``estimated_cost`` for ``user_id``; ``release``
    hands the reservation back when the response does not go through.
    """

    async def validate_incident(self, incident: Incident, position: Position) -> Result: ...

    def release(self, user_id: str, amount_usd: float) -> None: ...


class Predictor(Protocol):
    """``data`` carries ``risk_level``, ``confidence`` and ``ttb_minutes``."""

    async def predict_liquidation_risk(self, position: Position) -> Result: ...


class Optimizer(Protocol):
    """``data`` carries ``actions`` and ``cost``."""

    async def optimize_protection_plan(
        self, position: Position, incident: Incident
    ) -> Result: ...


class Actioner(Protocol):
    """``data`` carries ``tx_id`` and ``cost``."""

    async def execute_plan(
        self, plan: Mapping[str, Any], position: Position
    ) -> Result: ...


class Explainer(Protocol):
    """``data`` carries ``short`` and ``detailed``."""

    async def explain_incident(self, incident: Incident, position: Position) -> Result: ...


class IncidentReporter(Protocol):
    async def report_incident(self, incident: Incident) -> Result: ...
