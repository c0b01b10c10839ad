"""Deterministic attack scoring for single transactions and transaction windows.

Each indicator adds a fixed weight to a confidence score clamped to [0, 1];
the score is then bucketed into a severity. Functions here are pure: no
clock, no randomness, no I/O.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..models import Severity

logger = logging.getLogger(__name__)

LARGE_BORROW_USD = 1_000_000.0
MIN_PROTOCOL_INTERACTIONS = 3
PRICE_IMPACT_THRESHOLD = 0.05
INTERNAL_CALLS_THRESHOLD = 10

LARGE_BORROW_WEIGHT = 0.30
MULTI_PROTOCOL_WEIGHT = 0.25
PRICE_IMPACT_WEIGHT = 0.20
ARBITRAGE_WEIGHT = 0.15
INTERNAL_CALLS_WEIGHT = 0.10

SANDWICH_ADDRESS_WEIGHT = 0.4
SANDWICH_DIRECTION_WEIGHT = 0.3
SANDWICH_PROFIT_WEIGHT = 0.2
SANDWICH_GAS_WEIGHT = 0.1
SANDWICH_MIN_PROFIT = 1.01
GAS_ELEVATION_FACTOR = 1.5
GAS_ELEVATED_SHARE = 0.3

# (threshold, severity, attack_detected), checked top-down
_SEVERITY_BUCKETS: tuple[tuple[float, Severity, bool], ...] = (
    (0.7, Severity.CRITICAL, True),
    (0.5, Severity.HIGH, True),
    (0.3, Severity.MEDIUM, True),
)

ATTACK_EVENT_TYPES = {
    "flash_loan": "flash_loan_attack",
    "sandwich": "sandwich_attack",
}


@dataclass(frozen=True)
class AttackAnalysis:
    attack_type: str
    attack_detected: bool
    confidence: float
    severity: Severity
    indicators: tuple[str, ...] = ()
    tx_hash: str = "unknown"
    transactions_analyzed: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "attack_type": self.attack_type,
            "attack_detected": self.attack_detected,
            "confidence": self.confidence,
            "severity": self.severity.value,
            "indicators": list(self.indicators),
            "tx_hash": self.tx_hash,
            "transactions_analyzed": self.transactions_analyzed,
        }


@dataclass(frozen=True)
class RiskAssessment:
    tx_hash: str
    overall_risk_level: Severity
    max_confidence: float
    flash_loan: AttackAnalysis
    sandwich: AttackAnalysis
    recommendations: tuple[str, ...]

    @property
    def primary(self) -> AttackAnalysis:
        """The detector with the highest confidence (flash loan wins ties)."""
        if self.sandwich.confidence > self.flash_loan.confidence:
            return self.sandwich
        return self.flash_loan


def _clamp(score: float) -> float:
    # Rounding keeps threshold comparisons stable against float summation noise.
    return round(min(max(score, 0.0), 1.0), 6)


def _bucket(confidence: float) -> tuple[Severity, bool]:
    for threshold, severity, detected in _SEVERITY_BUCKETS:
        if confidence >= threshold:
            return severity, detected
    return Severity.LOW, False


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def detect_flash_loan_attack(tx: Mapping[str, Any]) -> AttackAnalysis:
    """Score a single transaction for flash-loan attack indicators."""
    score = 0.0
    indicators: list[str] = []

    borrow_amount = _as_float(tx.get("borrow_amount", 0.0))
    if borrow_amount > LARGE_BORROW_USD:
        score += LARGE_BORROW_WEIGHT
        indicators.append(f"Large borrow amount: ${borrow_amount:,.0f}")

    interactions = tx.get("protocol_interactions") or ()
    # either a count or the protocols themselves
    if isinstance(interactions, (int, float)) and not isinstance(interactions, bool):
        protocol_count = int(interactions)
        protocol_label = f"{protocol_count} distinct"
    else:
        protocols = sorted({str(p) for p in interactions})
        protocol_count = len(protocols)
        protocol_label = ", ".join(protocols)
    if protocol_count >= MIN_PROTOCOL_INTERACTIONS:
        score += MULTI_PROTOCOL_WEIGHT
        indicators.append(f"Multiple protocols: {protocol_label}")

    price_impact = _as_float(tx.get("price_impact", 0.0))
    if price_impact > PRICE_IMPACT_THRESHOLD:
        score += PRICE_IMPACT_WEIGHT
        indicators.append(f"High price impact: {price_impact * 100:.2f}%")

    if bool(tx.get("arbitrage_pattern", False)):
        score += ARBITRAGE_WEIGHT
        indicators.append("Arbitrage pattern detected")

    internal_calls = int(_as_float(tx.get("internal_calls", 0)))
    if internal_calls > INTERNAL_CALLS_THRESHOLD:
        score += INTERNAL_CALLS_WEIGHT
        indicators.append(f"Complex transaction: {internal_calls} internal calls")

    confidence = _clamp(score)
    severity, detected = _bucket(confidence)

    if detected:
        logger.warning(
            "Flash loan attack detected: confidence=%.2f severity=%s",
            confidence,
            severity.value,
        )

    return AttackAnalysis(
        attack_type="flash_loan",
        attack_detected=detected,
        confidence=confidence,
        severity=severity,
        indicators=tuple(indicators),
        tx_hash=str(tx.get("hash", "unknown")),
    )


def _is_opposite(front: str, back: str) -> bool:
    return {front, back} == {"buy", "sell"}


def detect_sandwich_attack(window: Sequence[Mapping[str, Any]]) -> AttackAnalysis:
    """Score a transaction window for front-run / victim / back-run patterns."""
    if len(window) < 3:
        return AttackAnalysis(
            attack_type="sandwich",
            attack_detected=False,
            confidence=0.0,
            severity=Severity.LOW,
            transactions_analyzed=len(window),
        )

    score = 0.0
    indicators: list[str] = []

    for i in range(1, len(window) - 1):
        front, victim, back = window[i - 1], window[i], window[i + 1]
        attacker = front.get("from", "")
        if not attacker or attacker != back.get("from", "") or attacker == victim.get("from", ""):
            continue

        score += SANDWICH_ADDRESS_WEIGHT
        indicators.append(f"Same attacker address in positions {i - 1} and {i + 1}")

        front_dir = front.get("trade_direction", "")
        back_dir = back.get("trade_direction", "")
        if _is_opposite(front_dir, back_dir):
            score += SANDWICH_DIRECTION_WEIGHT
            indicators.append(f"Opposite trade directions: {front_dir} -> {back_dir}")

        front_amount = _as_float(front.get("amount", 0.0))
        back_amount = _as_float(back.get("amount", 0.0))
        if front_amount > 0 and back_amount > front_amount * SANDWICH_MIN_PROFIT:
            score += SANDWICH_PROFIT_WEIGHT
            profit_pct = (back_amount - front_amount) / front_amount * 100
            indicators.append(f"Profitable sandwich: {profit_pct:.2f}% profit")

    elevated = sum(
        1
        for tx in window
        if _as_float(tx.get("gas_price", 0))
        > _as_float(tx.get("average_gas_price", 0)) * GAS_ELEVATION_FACTOR
    )
    if elevated > len(window) * GAS_ELEVATED_SHARE:
        score += SANDWICH_GAS_WEIGHT
        indicators.append(f"High gas price transactions: {elevated}/{len(window)}")

    confidence = _clamp(score)
    severity, detected = _bucket(confidence)

    if detected:
        logger.warning(
            "Sandwich attack detected: confidence=%.2f severity=%s",
            confidence,
            severity.value,
        )

    return AttackAnalysis(
        attack_type="sandwich",
        attack_detected=detected,
        confidence=confidence,
        severity=severity,
        indicators=tuple(indicators),
        tx_hash=str(window[len(window) // 2].get("hash", "unknown")),
        transactions_analyzed=len(window),
    )


_RECOMMENDATIONS = {
    Severity.CRITICAL: (
        "Immediate position protection recommended",
        "Consider emergency deleveraging if applicable",
    ),
    Severity.HIGH: (
        "Increase monitoring frequency",
        "Review position health factors",
    ),
    Severity.MEDIUM: ("Monitor for related transactions",),
    Severity.LOW: ("Continue normal monitoring",),
}


def analyze_transaction_risk(
    tx: Mapping[str, Any], window: Sequence[Mapping[str, Any]] | None = None
) -> RiskAssessment:
    """Run both detectors; the window defaults to the single transaction."""
    flash = detect_flash_loan_attack(tx)
    sandwich = detect_sandwich_attack(list(window) if window is not None else [tx])

    max_confidence = max(flash.confidence, sandwich.confidence)
    level, _ = _bucket(max_confidence)

    return RiskAssessment(
        tx_hash=str(tx.get("hash", "unknown")),
        overall_risk_level=level,
        max_confidence=max_confidence,
        flash_loan=flash,
        sandwich=sandwich,
        recommendations=_RECOMMENDATIONS[level],
    )


def classify_event(
    tx: Mapping[str, Any],
    position_id: str,
    window: Sequence[Mapping[str, Any]] | None = None,
    position_value_usd: float = 0.0,
) -> dict[str, Any] | None:
    """Turn a flagged transaction into a risk event, or None when nothing is detected."""
    assessment = analyze_transaction_risk(tx, window)
    primary = assessment.primary
    if not primary.attack_detected:
        return None

    return {
        "event_type": ATTACK_EVENT_TYPES[primary.attack_type],
        "position_id": position_id,
        "severity": primary.severity.value,
        "position_value_usd": position_value_usd,
        "tx_hash": assessment.tx_hash,
        "confidence": primary.confidence,
        "indicators": list(primary.indicators),
    }
