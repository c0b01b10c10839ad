"""Unit tests for the attack classifier."""
from __future__ import annotations

import pytest

from protection_swarm.models import Severity
from protection_swarm.security import (
    analyze_transaction_risk,
    classify_event,
    detect_flash_loan_attack,
    detect_sandwich_attack,
)


class TestFlashLoanDetection:
    def test_all_indicators_is_critical(self, flash_loan_tx: dict) -> None:
        analysis = detect_flash_loan_attack(flash_loan_tx)
        assert analysis.attack_detected
        assert analysis.confidence == pytest.approx(1.0)
        assert analysis.severity == Severity.CRITICAL
        assert len(analysis.indicators) == 5
        assert analysis.tx_hash == "0xflash"

    def test_empty_transaction_is_low(self) -> None:
        analysis = detect_flash_loan_attack({})
        assert not analysis.attack_detected
        assert analysis.confidence == 0.0
        assert analysis.severity == Severity.LOW
        assert analysis.tx_hash == "unknown"

    @pytest.mark.parametrize(
        "tx, confidence, severity",
        [
            ({"borrow_amount": 2_000_000}, 0.3, Severity.MEDIUM),
            ({"price_impact": 0.1, "internal_calls": 11}, 0.3, Severity.MEDIUM),
            ({"borrow_amount": 2_000_000, "protocol_interactions": ["a", "b", "c"]},
             0.55, Severity.HIGH),
            ({"arbitrage_pattern": True, "internal_calls": 50}, 0.25, Severity.LOW),
        ],
    )
    def test_buckets(self, tx: dict, confidence: float, severity: Severity) -> None:
        analysis = detect_flash_loan_attack(tx)
        assert analysis.confidence == confidence
        assert analysis.severity == severity
        assert analysis.attack_detected == (severity != Severity.LOW)

    def test_thresholds_are_strict(self) -> None:
        analysis = detect_flash_loan_attack(
            {"borrow_amount": 1_000_000, "price_impact": 0.05, "internal_calls": 10}
        )
        assert analysis.confidence == 0.0

    def test_protocols_counted_distinct(self) -> None:
        analysis = detect_flash_loan_attack({"protocol_interactions": ["aave", "aave", "curve"]})
        assert analysis.confidence == 0.0

    def test_protocol_count_accepted(self) -> None:
        analysis = detect_flash_loan_attack(
            {
                "borrow_amount": 2_500_000,
                "protocol_interactions": 3,
                "price_impact": 0.08,
                "arbitrage_pattern": True,
                "internal_calls": 15,
            }
        )
        assert analysis.attack_detected
        assert analysis.confidence == pytest.approx(1.0)
        assert analysis.severity == Severity.CRITICAL
        assert "Multiple protocols: 3 distinct" in analysis.indicators

    def test_non_string_protocol_ids(self) -> None:
        analysis = detect_flash_loan_attack({"protocol_interactions": [1, 2, 3]})
        assert analysis.confidence == pytest.approx(0.25)
        assert analysis.indicators == ("Multiple protocols: 1, 2, 3",)

    def test_deterministic(self, flash_loan_tx: dict) -> None:
        assert detect_flash_loan_attack(flash_loan_tx) == detect_flash_loan_attack(flash_loan_tx)


class TestSandwichDetection:
    def test_classic_sandwich(self, sandwich_window: list[dict]) -> None:
        analysis = detect_sandwich_attack(sandwich_window)
        assert analysis.attack_detected
        assert analysis.confidence == pytest.approx(1.0)
        assert analysis.severity == Severity.CRITICAL
        assert analysis.tx_hash == "0x2"
        assert analysis.transactions_analyzed == 3

    def test_short_window_is_low(self, sandwich_window: list[dict]) -> None:
        analysis = detect_sandwich_attack(sandwich_window[:2])
        assert not analysis.attack_detected
        assert analysis.confidence == 0.0
        assert analysis.transactions_analyzed == 2

    def test_same_address_only(self) -> None:
        window = [
            {"from": "0xa", "trade_direction": "buy", "amount": 100.0},
            {"from": "0xv", "trade_direction": "buy", "amount": 1.0},
            {"from": "0xa", "trade_direction": "buy", "amount": 100.0},
        ]
        analysis = detect_sandwich_attack(window)
        assert analysis.confidence == pytest.approx(0.4)
        assert analysis.severity == Severity.MEDIUM

    def test_victim_from_attacker_not_counted(self) -> None:
        window = [{"from": "0xa"}, {"from": "0xa"}, {"from": "0xa"}]
        assert detect_sandwich_attack(window).confidence == 0.0

    def test_missing_sender_not_counted(self) -> None:
        window = [{"from": ""}, {"from": "0xv"}, {"from": ""}]
        assert detect_sandwich_attack(window).confidence == 0.0

    def test_confidence_clamped(self, sandwich_window: list[dict]) -> None:
        # two overlapping sandwiches push the raw score past 1
        window = sandwich_window + [
            {"hash": "0x4", "from": "0xvictim2", "trade_direction": "buy", "amount": 5.0},
            {"hash": "0x5", "from": "0xattacker", "trade_direction": "buy", "amount": 120.0},
        ]
        assert detect_sandwich_attack(window).confidence == 1.0


class TestCombinedAnalysis:
    def test_picks_max_confidence(self, flash_loan_tx: dict) -> None:
        assessment = analyze_transaction_risk(flash_loan_tx)
        assert assessment.max_confidence == pytest.approx(1.0)
        assert assessment.overall_risk_level == Severity.CRITICAL
        assert assessment.primary.attack_type == "flash_loan"
        assert assessment.recommendations

    def test_window_drives_sandwich(self, sandwich_window: list[dict]) -> None:
        assessment = analyze_transaction_risk(sandwich_window[1], sandwich_window)
        assert assessment.primary.attack_type == "sandwich"
        assert assessment.sandwich.attack_detected

    def test_benign_transaction(self) -> None:
        assessment = analyze_transaction_risk({"hash": "0xok"})
        assert assessment.overall_risk_level == Severity.LOW
        assert assessment.recommendations == ("Continue normal monitoring",)


class TestClassifyEvent:
    def test_flash_loan_becomes_risk_event(self, flash_loan_tx: dict) -> None:
        event = classify_event(flash_loan_tx, "pos-1", position_value_usd=1000.0)
        assert event is not None
        assert event["event_type"] == "flash_loan_attack"
        assert event["position_id"] == "pos-1"
        assert event["severity"] == "critical"
        assert event["position_value_usd"] == 1000.0
        assert event["indicators"]

    def test_sandwich_becomes_risk_event(self, sandwich_window: list[dict]) -> None:
        event = classify_event(sandwich_window[1], "pos-1", window=sandwich_window)
        assert event["event_type"] == "sandwich_attack"

    def test_nothing_detected_returns_none(self) -> None:
        assert classify_event({"hash": "0xok"}, "pos-1") is None
