"""
Base class for supervised reference agents.
"""
from __future__ import annotations

import logging
from abc import ABC
from typing import Any

from ..models import AgentHealthEntry, AgentStatus

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """
    Lifecycle shared by the in-process collaborator agents.

    Subclasses define a ``name`` attribute and may override ``_on_start`` to
    validate their configuration and ``_health_details`` to expose counters.
    An exception from ``_on_start`` propagates so the supervisor can apply
    its startup mode.
    """

    name: str = "base"

    def __init__(self) -> None:
        self._running = False
        self._last_error: str | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, config: Any = None) -> AgentHealthEntry:
        self._on_start(config)
        self._running = True
        self._last_error = None
        logger.info("Agent '%s' started", self.name)
        return await self.health()

    async def stop(self) -> None:
        self._running = False
        logger.info("Agent '%s' stopped", self.name)

    async def health(self) -> AgentHealthEntry:
        return AgentHealthEntry(
            name=self.name,
            status=AgentStatus.RUNNING if self._running else AgentStatus.STOPPED,
            error=self._last_error,
            details=self._health_details(),
        )

    def _on_start(self, config: Any) -> None:
        """Hook for subclass start-up checks."""

    def _health_details(self) -> dict[str, Any]:
        return {}
