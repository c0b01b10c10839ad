"""Agent protocol: lifecycle contract for supervised collaborators."""
from typing import Any, Protocol

from ..models import AgentHealthEntry


class Agent(Protocol):
    """A named collaborator service the supervisor starts and polls."""

    @property
    def name(self) -> str: ...

    async def start(self, config: Any) -> AgentHealthEntry: ...

    async def stop(self) -> None: ...

    async def health(self) -> AgentHealthEntry: ...
