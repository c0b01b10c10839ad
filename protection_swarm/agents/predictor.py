"""Liquidation risk predictor."""
from __future__ import annotations

import logging
import math
from typing import Any

from ..models import Position, Result, Severity
from .base import BaseAgent

logger = logging.getLogger(__name__)

DEFAULT_ANNUAL_VOLATILITY = 0.5
MINUTES_PER_YEAR = 365.25 * 24 * 60

# (upper health factor bound, level), checked top-down
_RISK_LEVELS: tuple[tuple[float, Severity], ...] = (
    (1.0, Severity.CRITICAL),
    (1.1, Severity.HIGH),
    (1.5, Severity.MEDIUM),
)

_CONFIDENCE = {
    Severity.CRITICAL: 0.95,
    Severity.HIGH: 0.9,
    Severity.MEDIUM: 0.85,
    Severity.LOW: 0.8,
}


def risk_level(health_factor: float) -> Severity:
    for bound, level in _RISK_LEVELS:
        if health_factor < bound:
            return level
    return Severity.LOW


def time_to_breach_minutes(
    health_factor: float, annual_volatility: float = DEFAULT_ANNUAL_VOLATILITY
) -> float:
    """Minutes until a two-sigma price move erases the health factor's margin above 1.

    ``0`` when already at or below 1, ``inf`` without debt.
    """
    if math.isinf(health_factor):
        return math.inf
    if health_factor <= 1.0:
        return 0.0
    per_minute = annual_volatility / math.sqrt(MINUTES_PER_YEAR)
    drop_needed = (health_factor - 1.0) / health_factor
    return max(1.0, (drop_needed / (2 * per_minute)) ** 2)


class PredictorAgent(BaseAgent):
    name = "predictor"

    def __init__(self, annual_volatility: float = DEFAULT_ANNUAL_VOLATILITY) -> None:
        super().__init__()
        self._volatility = annual_volatility
        self.predictions = 0

    def _on_start(self, config: Any) -> None:
        if self._volatility <= 0:
            raise ValueError("annual_volatility must be positive")

    def _health_details(self) -> dict[str, Any]:
        return {"predictions": self.predictions}

    async def predict_liquidation_risk(self, position: Position) -> Result:
        self.predictions += 1
        hf = position.health_factor
        level = risk_level(hf)
        ttb = time_to_breach_minutes(hf, self._volatility)
        logger.debug(
            "Position %s: hf=%.4f risk=%s ttb=%.1fmin", position.position_id, hf, level.value, ttb
        )
        return Result.ok(
            risk_level=level.value,
            health_factor=hf,
            ttb_minutes=ttb,
            confidence=_CONFIDENCE[level],
        )
