"""
Constraints — make a proposed allocation deterministic, bounded and auditable.

Core entry points: repair_portfolio (pure), enforce_constraints (with fallback)
Validation: validate_portfolio, constraints_check
"""
from portfolio.constraints.fallback import build_fallback_portfolio
from portfolio.constraints.repair import (
    RepairReason,
    RepairResult,
    enforce_constraints,
    feasible_capacity_bps,
    repair_portfolio,
)
from portfolio.constraints.validator import constraints_check, is_crypto, validate_portfolio

__all__ = [
    "RepairReason",
    "RepairResult",
    "repair_portfolio",
    "enforce_constraints",
    "feasible_capacity_bps",
    "build_fallback_portfolio",
    "validate_portfolio",
    "constraints_check",
    "is_crypto",
]
