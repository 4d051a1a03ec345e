"""
Portfolio validation — the acceptance rules every recorded portfolio must meet.

Used as the final gate of the repair engine and to build the
``constraints_check`` block stored alongside each run.
"""
import re
from typing import Dict, List

from config.settings import CRYPTO_ETFS, RESERVED_TICKERS, WEIGHT_TOLERANCE_PCT
from portfolio.holdings.schema import UNKNOWN_SECTOR, ConstraintConfig, Holding, Portfolio

_CRYPTO_PAIR = re.compile(r"-(USD|USDT)$")
_CRYPTO_NAME = re.compile(r"(BTC|ETH)")


def is_crypto(holding: Holding) -> bool:
    """Crypto exposure: crypto sector, X-USD pairs, spot crypto ETFs, BTC/ETH tickers."""
    ticker = holding.ticker.upper()
    if "CRYPTO" in holding.sector.upper():
        return True
    if _CRYPTO_PAIR.search(ticker):
        return True
    if ticker in CRYPTO_ETFS:
        return True
    return bool(_CRYPTO_NAME.search(ticker))


def crypto_weight(portfolio: Portfolio) -> float:
    return round(sum(h.weight_pct for h in portfolio if is_crypto(h)), 2)


def max_position_observed(portfolio: Portfolio) -> float:
    return round(max((h.weight_pct for h in portfolio), default=0.0), 2)


def max_sector_observed(portfolio: Portfolio) -> float:
    return round(max(portfolio.sector_weights().values(), default=0.0), 2)


def validate_portfolio(portfolio: Portfolio, config: ConstraintConfig) -> List[str]:
    """
    Check every invariant; returns a list of violations (empty = valid).

    Tolerance is one basis point (0.01 pct) on each weight, sector and total.
    """
    tol = WEIGHT_TOLERANCE_PCT + 1e-9
    errors = []

    if len(portfolio) != config.positions:
        errors.append(f"position_count={len(portfolio)} expected={config.positions}")

    tickers = portfolio.tickers
    if len(set(tickers)) != len(tickers):
        errors.append("duplicate_tickers")

    for h in portfolio:
        if h.ticker.upper() in RESERVED_TICKERS:
            errors.append(f"reserved_ticker={h.ticker}")
        if h.weight_pct < config.min_position_pct - tol:
            errors.append(f"below_min_position={h.ticker}:{h.weight_pct}")
        if h.weight_pct > config.max_position_pct + tol:
            errors.append(f"above_max_position={h.ticker}:{h.weight_pct}")

    for sector, weight in sorted(portfolio.sector_weights().items()):
        if weight > config.max_sector_pct + tol:
            errors.append(f"above_max_sector={sector}:{weight}")

    crypto = crypto_weight(portfolio)
    if crypto > config.max_crypto_pct + tol:
        errors.append(f"above_max_crypto={crypto}")

    total = portfolio.total_weight
    if abs(total - 100.0) > tol:
        errors.append(f"total_weight={total}")

    return errors


def constraints_check(portfolio: Portfolio, config: ConstraintConfig) -> Dict:
    """Summary block recorded with each run output."""
    tol = WEIGHT_TOLERANCE_PCT
    max_pos = max_position_observed(portfolio)
    max_sec = max_sector_observed(portfolio)
    crypto = crypto_weight(portfolio)
    unknown = sum(1 for h in portfolio if h.sector == UNKNOWN_SECTOR)
    notes = f"max_position_observed={max_pos}%, max_sector_observed={max_sec}%, crypto_observed={crypto}%"
    if unknown:
        notes += f", unknown_sector_holdings={unknown}"
    return {
        "max_position_ok": max_pos <= config.max_position_pct + tol,
        "max_sector_ok": max_sec <= config.max_sector_pct + tol,
        "max_crypto_ok": crypto <= config.max_crypto_pct + tol,
        "notes": notes,
    }
