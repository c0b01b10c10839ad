"""Agent registry and health supervisor."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..errors import AgentUnavailable
from ..interfaces.agent import Agent
from ..models import RESTARTABLE_STATUSES, AgentHealthEntry, AgentStatus

logger = logging.getLogger(__name__)

_UNHEALTHY_START = frozenset({AgentStatus.FAILED, AgentStatus.ERROR})


@dataclass(frozen=True)
class AgentSpec:
    """How to build one agent; ``factory`` must return a fresh instance per call."""

    name: str
    factory: Callable[[], Agent]
    required: bool = False


class Supervisor:
    """Starts agents in registration order and keeps their last known health.

    In tolerant mode an agent that fails to start is recorded as ``mock`` and
    the pipeline skips or fails the stages that need it. In strict mode a
    required agent's failure aborts startup.
    """

    def __init__(
        self,
        specs: Iterable[AgentSpec] = (),
        strict: bool = False,
        agent_config: Any = None,
    ) -> None:
        self._specs: dict[str, AgentSpec] = {}
        self._strict = strict
        self._agent_config = agent_config
        self._agents: dict[str, Agent] = {}
        self._entries: dict[str, AgentHealthEntry] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: AgentSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"Agent '{spec.name}' is already registered")
        self._specs[spec.name] = spec

    async def _start_one(self, spec: AgentSpec) -> tuple[Agent, AgentHealthEntry]:
        agent = spec.factory()
        entry = await agent.start(self._agent_config)
        if entry.status in _UNHEALTHY_START:
            raise AgentUnavailable(entry.error or f"reported {entry.status.value} on start")
        return agent, entry

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> None:
        for spec in self._specs.values():
            try:
                agent, entry = await self._start_one(spec)
            except Exception as e:
                if self._strict and spec.required:
                    logger.error("Required agent '%s' failed to start: %s", spec.name, e)
                    await self.stop_all()
                    raise AgentUnavailable(
                        f"Required agent '{spec.name}' failed to start: {e}"
                    ) from e
                status = AgentStatus.FAILED if self._strict else AgentStatus.MOCK
                logger.warning(
                    "Agent '%s' failed to start (%s); recorded as %s", spec.name, e, status.value
                )
                self._entries[spec.name] = AgentHealthEntry(
                    name=spec.name, status=status, error=str(e)
                )
                continue

            self._agents[spec.name] = agent
            self._entries[spec.name] = entry

        logger.info(
            "Supervisor started %d/%d agents", self.healthy_count(), len(self._specs)
        )

    async def stop_all(self) -> None:
        for name in reversed(list(self._agents)):
            agent = self._agents.pop(name)
            try:
                await agent.stop()
            except Exception as e:
                logger.error("Agent '%s' failed to stop: %s", name, e)
            self._entries[name] = AgentHealthEntry(name=name, status=AgentStatus.STOPPED)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def refresh_health(self) -> dict[str, AgentHealthEntry]:
        for name, entry in list(self._entries.items()):
            if entry.status == AgentStatus.MOCK:
                continue
            agent = self._agents.get(name)
            if agent is None:
                continue
            try:
                self._entries[name] = await agent.health()
            except Exception as e:
                logger.warning("Health check for '%s' raised: %s", name, e)
                self._entries[name] = AgentHealthEntry(
                    name=name, status=AgentStatus.ERROR, error=str(e)
                )
        return self.entries()

    async def restart_failed_agents(self) -> list[str]:
        """Rebuild and start every failed, stopped or errored agent; return the restarted names."""
        restarted: list[str] = []
        for name, spec in self._specs.items():
            entry = self._entries.get(name)
            if entry is None or entry.status not in RESTARTABLE_STATUSES:
                continue

            old = self._agents.pop(name, None)
            if old is not None:
                try:
                    await old.stop()
                except Exception as e:
                    logger.debug("Stopping stale agent '%s' raised: %s", name, e)

            try:
                agent, new_entry = await self._start_one(spec)
            except Exception as e:
                logger.warning("Restart of agent '%s' failed: %s", name, e)
                self._entries[name] = AgentHealthEntry(
                    name=name, status=entry.status, error=str(e)
                )
                continue

            self._agents[name] = agent
            self._entries[name] = new_entry
            restarted.append(name)
            logger.info("Agent '%s' restarted", name)
        return restarted

    async def run_health_checks(self, interval_seconds: float) -> None:
        """Refresh and restart on a fixed interval until cancelled."""
        logger.info("Health supervision every %s seconds", interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.refresh_health()
                restarted = await self.restart_failed_agents()
                if restarted:
                    logger.info("Restarted agents: %s", ", ".join(restarted))
            except Exception as e:
                logger.error("Error in health supervision loop: %s", e)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> Agent | None:
        """The agent, only while it is running."""
        entry = self._entries.get(name)
        if entry is None or entry.status != AgentStatus.RUNNING:
            return None
        return self._agents.get(name)

    def entries(self) -> dict[str, AgentHealthEntry]:
        return dict(self._entries)

    def healthy_count(self) -> int:
        return sum(1 for e in self._entries.values() if e.is_healthy)

    @property
    def total(self) -> int:
        return len(self._specs)
