"""Error taxonomy for the protection swarm."""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Tag carried by a failed Result so callers can branch without exceptions."""

    VALIDATION = "validation"
    POLICY_VIOLATION = "policy_violation"
    AGENT_UNAVAILABLE = "agent_unavailable"
    STAGE_FAILURE = "stage_failure"
    NOT_FOUND = "not_found"
    UNEXPECTED = "unexpected"


class SwarmError(Exception):
    """Base class for all swarm errors."""

    kind: ErrorKind = ErrorKind.UNEXPECTED


class ValidationError(SwarmError):
    """Missing or malformed risk event fields."""

    kind = ErrorKind.VALIDATION


class PolicyViolation(SwarmError):
    """Incident response blocked by the owner's policy."""

    kind = ErrorKind.POLICY_VIOLATION


class AgentUnavailable(SwarmError):
    """A collaborator agent failed to start or respond."""

    kind = ErrorKind.AGENT_UNAVAILABLE


class PipelineStageFailure(SwarmError):
    """A pipeline stage returned success=false or raised."""

    kind = ErrorKind.STAGE_FAILURE

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class NotFound(SwarmError):
    """Unknown incident, position or session id."""

    kind = ErrorKind.NOT_FOUND


class InvalidTransition(SwarmError):
    """Incident status change not allowed by the lifecycle state machine."""
