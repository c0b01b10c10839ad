"""Incident lifecycle pipeline.

An incident moves through a fixed sequence of stages, each a call to one
collaborator agent returning a :class:`Result`::

    policy_check -> risk_prediction -> plan_optimization
                 -> plan_execution -> incident_analysis

Status flow is ``detected -> analyzing -> executing -> protected | failed``,
with ``policy_blocked`` after a policy rejection and ``error`` when a
collaborator raises. Nothing here raises to the caller; failures come back
as a failed Result and the incident keeps its terminal status and reason.
"""
from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping

from ..errors import ErrorKind, NotFound, PipelineStageFailure, ValidationError
from ..interfaces.repository import Repository
from ..models import (
    Incident,
    IncidentStatus,
    Position,
    Result,
    Severity,
    utcnow,
)
from .state import SwarmState
from .supervisor import Supervisor

logger = logging.getLogger(__name__)

STAGES = (
    "policy_check",
    "risk_prediction",
    "plan_optimization",
    "plan_execution",
    "incident_analysis",
)

_REQUIRED_FIELDS = ("position_id", "severity", "event_type")
_CORE_FIELDS = frozenset(
    _REQUIRED_FIELDS + ("incident_id", "position_value_usd", "detected_at")
)

StageFn = Callable[[Incident, Position], Awaitable[Result]]


def _parse_detected_at(value: Any) -> datetime:
    if value is None:
        return utcnow()
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"detected_at is not an ISO-8601 timestamp: {value!r}") from e
    else:
        raise ValidationError(f"detected_at must be a datetime or ISO-8601 string, got {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_incident(event: Mapping[str, Any]) -> Incident:
    """Validate a raw risk event and turn it into a ``detected`` incident.

    Raises:
        ValidationError: on a missing or malformed field.
    """
    if not isinstance(event, Mapping):
        raise ValidationError("Risk event must be a mapping")

    for name in _REQUIRED_FIELDS:
        value = event.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Missing required field: {name}")

    severity_raw = event["severity"].strip().lower()
    try:
        severity = Severity(severity_raw)
    except ValueError as e:
        allowed = ", ".join(s.value for s in Severity)
        raise ValidationError(
            f"Invalid severity '{event['severity']}' (expected one of {allowed})"
        ) from e

    value_usd = event.get("position_value_usd", 0.0)
    if isinstance(value_usd, bool) or not isinstance(value_usd, (int, float)):
        raise ValidationError("position_value_usd must be a number")
    if not math.isfinite(value_usd) or value_usd < 0:
        raise ValidationError("position_value_usd must be a non-negative number")

    extra = {k: v for k, v in event.items() if k not in _CORE_FIELDS}
    return Incident(
        incident_id=str(event.get("incident_id") or f"inc_{uuid.uuid4().hex[:12]}"),
        position_ids=(event["position_id"].strip(),),
        incident_type=event["event_type"].strip(),
        severity=severity,
        detected_at=_parse_detected_at(event.get("detected_at")),
        position_value_usd=float(value_usd),
        metadata={"event": extra} if extra else {},
    )


class IncidentPipeline:
    """Runs incidents through the stage sequence.

    Callers serialize access; the swarm holds ``state.lock`` around every
    public call.
    """

    def __init__(
        self, repository: Repository, supervisor: Supervisor, state: SwarmState
    ) -> None:
        self._repository = repository
        self._supervisor = supervisor
        self._state = state
        self._stages: dict[str, StageFn] = {
            "policy_check": self._policy_check,
            "risk_prediction": self._risk_prediction,
            "plan_optimization": self._plan_optimization,
            "plan_execution": self._plan_execution,
            "incident_analysis": self._incident_analysis,
        }

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _policy_check(self, incident: Incident, position: Position) -> Result:
        guard = self._supervisor.get("policy_guard")
        if guard is None:
            return Result.ok(skipped=True)
        return await guard.validate_incident(incident, position)

    async def _risk_prediction(self, incident: Incident, position: Position) -> Result:
        predictor = self._supervisor.get("predictor")
        if predictor is None:
            return Result.ok(skipped=True)
        return await predictor.predict_liquidation_risk(position)

    async def _plan_optimization(self, incident: Incident, position: Position) -> Result:
        optimizer = self._supervisor.get("optimizer")
        if optimizer is None:
            return Result.fail("Optimizer agent unavailable", kind=ErrorKind.AGENT_UNAVAILABLE)
        return await optimizer.optimize_protection_plan(position, incident)

    async def _plan_execution(self, incident: Incident, position: Position) -> Result:
        actioner = self._supervisor.get("actioner")
        if actioner is None:
            return Result.fail("Actioner agent unavailable", kind=ErrorKind.AGENT_UNAVAILABLE)
        return await actioner.execute_plan(incident.stage_data("plan_optimization"), position)

    async def _incident_analysis(self, incident: Incident, position: Position) -> Result:
        explainer = self._supervisor.get("explainer")
        if explainer is None:
            return Result.ok(skipped=True)
        return await explainer.explain_incident(incident, position)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def save(self, incident: Incident) -> Incident:
        await self._repository.save_incident(incident)
        self._state.track(incident)
        return incident

    async def finalize(self, incident: Incident) -> Incident:
        """Count a terminal incident, hand it to the reporter and persist it.

        Repository errors propagate after the incident has been counted and
        reported.
        """
        self._state.track(incident)
        self._state.metrics.incidents_handled += 1
        if incident.status == IncidentStatus.PROTECTED:
            self._state.metrics.protections_executed += 1

        log = logger.info if incident.status == IncidentStatus.PROTECTED else logger.warning
        log(
            "Incident %s %s%s",
            incident.incident_id,
            incident.status.value,
            f": {incident.metadata['reason']}" if incident.metadata.get("reason") else "",
        )

        reporter = self._supervisor.get("reporter")
        if reporter is not None:
            try:
                report = await reporter.report_incident(incident)
            except Exception as e:
                logger.error("Reporter raised for incident %s: %s", incident.incident_id, e)
            else:
                if not report.success:
                    logger.warning(
                        "Reporter failed for incident %s: %s", incident.incident_id, report.error
                    )

        await self._repository.save_incident(incident)
        return incident

    @staticmethod
    def outcome(incident: Incident, error: str | None = None, kind: ErrorKind | None = None) -> Result:
        data = {
            "incident_id": incident.incident_id,
            "status": incident.status.value,
            "incident": incident.to_dict(),
        }
        if incident.status == IncidentStatus.PROTECTED:
            return Result.ok(data)
        return Result.fail(
            error or incident.metadata.get("reason") or incident.status.value,
            kind=kind or ErrorKind.STAGE_FAILURE,
            data=data,
        )

    async def conclude(
        self, incident: Incident, error: str | None = None, kind: ErrorKind | None = None
    ) -> Result:
        """Finalize a terminal incident and build its outcome."""
        if incident.status != IncidentStatus.PROTECTED:
            self.release_reservation(incident)
        try:
            await self.finalize(incident)
        except Exception as e:
            logger.error("Could not persist incident %s: %s", incident.incident_id, e)
            failed = self.outcome(incident, error, kind)
            return Result.fail(
                f"Incident {incident.incident_id} not persisted: {e}",
                kind=ErrorKind.UNEXPECTED,
                data=failed.data,
            )
        return self.outcome(incident, error, kind)

    def release_reservation(self, incident: Incident) -> None:
        """Hand the spend reserved at the policy check back to the owner's budget."""
        approval = incident.stage_data("policy_check")
        guard = self._supervisor.get("policy_guard")
        if guard is None or not approval.get("estimated_cost") or not approval.get("user_id"):
            return
        try:
            guard.release(approval["user_id"], float(approval["estimated_cost"]))
        except Exception as e:
            logger.error("Could not release budget for incident %s: %s", incident.incident_id, e)

    async def abort(self, incident: Incident, stage: str, error: Exception) -> Result:
        """Move an incident to ``error`` after a collaborator raised during ``stage``."""
        failure = PipelineStageFailure(stage, str(error))
        logger.error("Stage %s raised for incident %s: %s", stage, incident.incident_id, error)
        incident = incident.with_stage_result(
            stage, Result.fail(str(error), kind=ErrorKind.UNEXPECTED)
        ).transition(IncidentStatus.ERROR, reason=str(failure), failed_stage=stage)
        return await self.conclude(incident, str(failure), ErrorKind.UNEXPECTED)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, event: Mapping[str, Any]) -> Incident:
        """Validate, persist and count a risk event.

        Raises:
            ValidationError: on a malformed event.
        """
        incident = build_incident(event)
        await self.save(incident)
        self._state.metrics.events_processed += 1
        logger.info(
            "Risk event ingested: %s %s (%s) for %s",
            incident.incident_id,
            incident.incident_type,
            incident.severity.value,
            incident.position_id,
        )
        return incident

    async def try_ingest(self, event: Mapping[str, Any]) -> Incident | Result:
        """Like :meth:`ingest`, but a rejected or unpersisted event comes back as a failed Result."""
        try:
            return await self.ingest(event)
        except ValidationError as e:
            logger.warning("Rejected risk event: %s", e)
            return Result.fail(str(e), kind=ErrorKind.VALIDATION)
        except Exception as e:
            logger.error("Could not persist risk event: %s", e)
            return Result.fail(f"Could not persist risk event: {e}", kind=ErrorKind.UNEXPECTED)

    async def process_risk_event(self, event: Mapping[str, Any]) -> Result:
        incident = await self.try_ingest(event)
        if isinstance(incident, Result):
            return incident
        return await self.handle_incident(incident)

    async def current(self, incident: Incident) -> Incident:
        """Latest stored version of ``incident``, or the given one when unavailable."""
        try:
            stored = await self._repository.get_incident(incident.incident_id)
        except Exception as e:
            logger.error("Could not reload incident %s: %s", incident.incident_id, e)
            return incident
        return stored or incident

    async def handle_incident(self, incident: Incident, until: str | None = None) -> Result:
        """Run every stage not yet passed, stopping at the first failure.

        With ``until`` the run stops after that stage, leaving the incident
        non-terminal for a caller that completes it.
        """
        if incident.is_terminal:
            return Result.fail(
                f"Incident {incident.incident_id} is already {incident.status.value}",
                kind=ErrorKind.VALIDATION,
                data={"incident_id": incident.incident_id, "status": incident.status.value},
            )

        try:
            position = await self._repository.get_position(incident.position_id)
        except Exception as e:
            return await self.abort(incident, "load_position", e)
        if position is None:
            missing = NotFound(f"Position not found: {incident.position_id}")
            incident = incident.transition(
                IncidentStatus.ERROR, reason=str(missing), error_kind=missing.kind.value
            )
            return await self.conclude(incident, kind=missing.kind)

        passed = {
            name
            for name, stage in incident.metadata.get("stage_results", {}).items()
            if stage.get("success")
        }

        for name in STAGES:
            if name in passed:
                continue

            try:
                if name == "plan_execution" and incident.status == IncidentStatus.ANALYZING:
                    incident = await self.save(incident.transition(IncidentStatus.EXECUTING))
                result = await self._stages[name](incident, position)
            except Exception as e:
                return await self.abort(incident, name, e)

            incident = incident.with_stage_result(name, result)
            if not result.success:
                blocked = name == "policy_check" and result.error_kind == ErrorKind.POLICY_VIOLATION
                incident = incident.transition(
                    IncidentStatus.POLICY_BLOCKED if blocked else IncidentStatus.FAILED,
                    reason=result.error,
                    failed_stage=name,
                )
                return await self.conclude(incident, result.error, result.error_kind)

            if name == "policy_check" and incident.status == IncidentStatus.DETECTED:
                incident = incident.transition(IncidentStatus.ANALYZING)
            try:
                await self.save(incident)
            except Exception as e:
                return await self.abort(incident, "persistence", e)

            if name == until:
                return Result.ok(
                    incident_id=incident.incident_id,
                    status=incident.status.value,
                    incident=incident.to_dict(),
                )

        return await self.conclude(incident.transition(IncidentStatus.PROTECTED))
