"""
Fraud gate package.

- patterns: pure detection heuristics over deposit/withdrawal history
- fraud_gate: synchronous checks consulted before deposit and withdrawal
  mutations, plus user risk evaluation
"""

from settlement.services.fraud.fraud_gate import (
    FraudDecision,
    FraudGate,
    RiskAssessment,
)


__all__ = ["FraudDecision", "FraudGate", "RiskAssessment"]
