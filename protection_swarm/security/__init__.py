"""Attack and risk classification."""
from .classifier import (
    AttackAnalysis,
    RiskAssessment,
    analyze_transaction_risk,
    classify_event,
    detect_flash_loan_attack,
    detect_sandwich_attack,
)

__all__ = [
    "AttackAnalysis",
    "RiskAssessment",
    "analyze_transaction_risk",
    "classify_event",
    "detect_flash_loan_attack",
    "detect_sandwich_attack",
]
