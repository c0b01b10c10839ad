"""Repository protocol: persistence for positions, incidents and policies."""
from typing import Protocol

from ..models import Incident, Policy, Position


class Repository(Protocol):
    """Key-value store addressed by id. The core depends only on this contract."""

    async def get_position(self, position_id: str) -> Position | None: ...

    async def save_position(self, position: Position) -> None: ...

    async def delete_position(self, position_id: str) -> bool: ...

    async def list_positions(self, active_only: bool = True) -> list[Position]: ...

    async def get_incident(self, incident_id: str) -> Incident | None: ...

    async def save_incident(self, incident: Incident) -> None: ...

    async def latest_incident(self) -> Incident | None: ...

    async def get_policy(self, user_id: str) -> Policy | None: ...

    async def save_policy(self, policy: Policy) -> None: ...
