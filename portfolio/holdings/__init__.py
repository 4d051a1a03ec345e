"""
Holdings — lane portfolios and their recorded history

Core types: Holding, Portfolio, ConstraintConfig, Snapshot, FundConfig
Manager: fund configs, run-document repair
History: snapshot loading from recorded runs
"""
from portfolio.holdings.schema import (
    ConstraintConfig,
    FundConfig,
    Holding,
    Portfolio,
    Snapshot,
)
from portfolio.holdings.history import (
    extract_portfolio,
    load_snapshots,
    snapshots_up_to,
)

__all__ = [
    "Holding",
    "Portfolio",
    "ConstraintConfig",
    "Snapshot",
    "FundConfig",
    "extract_portfolio",
    "load_snapshots",
    "snapshots_up_to",
]
