"""
Holdings data models — Holding, Portfolio, ConstraintConfig, Snapshot, FundConfig

Uses dataclasses for zero-dependency type safety.
Weights are decimal percentages (0-100, 2dp) at this boundary; the repair
engine works in integer basis points internally.
"""
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional

from config.settings import (
    DEFAULT_BENCHMARK_NAME,
    DEFAULT_BENCHMARK_TICKER,
    DEFAULT_MAX_CRYPTO_PCT,
    DEFAULT_MAX_POSITION_PCT,
    DEFAULT_MAX_SECTOR_PCT,
    DEFAULT_MIN_POSITION_PCT,
    DEFAULT_POSITIONS,
)
from src.data.price_series import DateLike, as_date

UNKNOWN_SECTOR = "UNKNOWN"

BPS_PER_PCT = 100
TOTAL_BPS = 100 * BPS_PER_PCT


def pct_to_bps(pct: float) -> int:
    return int(round(pct * BPS_PER_PCT))


def bps_to_pct(bps: int) -> float:
    return round(bps / BPS_PER_PCT, 2)


# ---------------------------------------------------------------------------
# Holding / Portfolio
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Holding:
    """One target position."""

    ticker: str
    weight_pct: float
    sector: str = UNKNOWN_SECTOR

    def to_dict(self) -> dict:
        return {"ticker": self.ticker, "weight_pct": self.weight_pct, "sector": self.sector}

    @classmethod
    def from_dict(cls, data: dict) -> Optional["Holding"]:
        """
        Lenient parse of a proposed holding.

        Returns None for entries with no ticker or a weight that is not a
        finite, non-negative number.
        """
        if not isinstance(data, dict):
            return None
        ticker = str(data.get("ticker") or "").strip().upper()
        if not ticker:
            return None
        try:
            weight = float(data.get("weight_pct"))
        except (TypeError, ValueError):
            return None
        if not math.isfinite(weight) or weight < 0:
            return None
        sector = str(data.get("sector") or "").strip() or UNKNOWN_SECTOR
        return cls(ticker=ticker, weight_pct=round(weight, 2), sector=sector)


@dataclass(frozen=True)
class Portfolio:
    """An ordered set of holdings, tickers unique."""

    holdings: tuple = ()

    def __post_init__(self):
        object.__setattr__(self, "holdings", tuple(self.holdings))

    def __iter__(self) -> Iterator[Holding]:
        return iter(self.holdings)

    def __len__(self) -> int:
        return len(self.holdings)

    @property
    def tickers(self) -> List[str]:
        return [h.ticker for h in self.holdings]

    @property
    def total_weight(self) -> float:
        return round(sum(h.weight_pct for h in self.holdings), 2)

    def weight_of(self, ticker: str) -> float:
        for h in self.holdings:
            if h.ticker == ticker:
                return h.weight_pct
        return 0.0

    def sector_weights(self) -> Dict[str, float]:
        sums: Dict[str, float] = {}
        for h in self.holdings:
            sums[h.sector] = sums.get(h.sector, 0.0) + h.weight_pct
        return {s: round(w, 2) for s, w in sums.items()}

    def to_list(self) -> List[dict]:
        return [h.to_dict() for h in self.holdings]

    @classmethod
    def from_list(cls, items: Iterable) -> "Portfolio":
        """Parse raw proposal items, dropping malformed entries (duplicates kept)."""
        holdings = []
        for item in items or []:
            h = item if isinstance(item, Holding) else Holding.from_dict(item)
            if h is not None:
                holdings.append(h)
        return cls(tuple(holdings))


# ---------------------------------------------------------------------------
# Constraint configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConstraintConfig:
    """Per-lane caps. Raises ValueError on an unsatisfiable configuration."""

    positions: int = DEFAULT_POSITIONS
    min_position_pct: float = DEFAULT_MIN_POSITION_PCT
    max_position_pct: float = DEFAULT_MAX_POSITION_PCT
    max_sector_pct: float = DEFAULT_MAX_SECTOR_PCT
    max_crypto_pct: float = DEFAULT_MAX_CRYPTO_PCT

    def __post_init__(self):
        if int(self.positions) != self.positions or self.positions <= 0:
            raise ValueError(f"positions must be a positive integer, got {self.positions}")
        if not (0 < self.min_position_pct <= self.max_position_pct):
            raise ValueError(
                f"Invalid min_position_pct: min={self.min_position_pct}, max={self.max_position_pct}"
            )
        if self.min_position_pct * self.positions > 100.0001:
            raise ValueError(
                f"Invalid min_position_pct: min={self.min_position_pct} with "
                f"positions={self.positions} exceeds 100%"
            )
        if self.max_position_pct * self.positions < 99.9999:
            raise ValueError(
                f"Invalid max_position_pct: max={self.max_position_pct} with "
                f"positions={self.positions} cannot reach 100%"
            )
        if self.max_sector_pct <= 0:
            raise ValueError(f"Invalid max_sector_pct: {self.max_sector_pct}")
        if not (0 <= self.max_crypto_pct <= 100):
            raise ValueError(f"Invalid max_crypto_pct: {self.max_crypto_pct}")

    @property
    def min_position_bps(self) -> int:
        return pct_to_bps(self.min_position_pct)

    @property
    def max_position_bps(self) -> int:
        return int(math.floor(self.max_position_pct * BPS_PER_PCT + 1e-6))

    @property
    def max_sector_bps(self) -> int:
        return int(math.floor(self.max_sector_pct * BPS_PER_PCT + 1e-6))

    @property
    def max_crypto_bps(self) -> int:
        return int(math.floor(self.max_crypto_pct * BPS_PER_PCT + 1e-6))

    def to_dict(self) -> dict:
        return {
            "positions": self.positions,
            "min_position_pct": self.min_position_pct,
            "max_position_pct": self.max_position_pct,
            "max_sector_pct": self.max_sector_pct,
            "max_crypto_pct": self.max_crypto_pct,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConstraintConfig":
        """Accepts lane config keys (``target_positions`` is an alias of ``positions``)."""
        positions = data.get("positions", data.get("target_positions", DEFAULT_POSITIONS))
        return cls(
            positions=int(positions),
            min_position_pct=float(data.get("min_position_pct", DEFAULT_MIN_POSITION_PCT)),
            max_position_pct=float(data.get("max_position_pct", DEFAULT_MAX_POSITION_PCT)),
            max_sector_pct=float(data.get("max_sector_pct", DEFAULT_MAX_SECTOR_PCT)),
            max_crypto_pct=float(data.get("max_crypto_pct", DEFAULT_MAX_CRYPTO_PCT)),
        )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Snapshot:
    """A recorded portfolio, effective from ``date`` until the next snapshot."""

    date: date
    portfolio: Portfolio

    @classmethod
    def of(cls, when: DateLike, holdings: Iterable) -> "Snapshot":
        portfolio = holdings if isinstance(holdings, Portfolio) else Portfolio.from_list(holdings)
        return cls(date=as_date(when), portfolio=portfolio)

    def to_dict(self) -> dict:
        return {"date": self.date.isoformat(), "portfolio": self.portfolio.to_list()}


# ---------------------------------------------------------------------------
# Fund (lane) configuration
# ---------------------------------------------------------------------------

@dataclass
class FundConfig:
    """One lane: a fund/provider pairing tracked independently."""

    fund_id: str
    provider: str = "unknown"
    constraints: ConstraintConfig = field(default_factory=ConstraintConfig)
    benchmark_ticker: str = DEFAULT_BENCHMARK_TICKER
    benchmark_name: str = DEFAULT_BENCHMARK_NAME

    @classmethod
    def from_dict(cls, fund_id: str, data: dict) -> "FundConfig":
        benchmark = data.get("benchmark") or {}
        ticker = benchmark.get("ticker") or data.get("benchmark_ticker") or DEFAULT_BENCHMARK_TICKER
        name = benchmark.get("name") or data.get("benchmark_label") or ticker
        return cls(
            fund_id=fund_id,
            provider=data.get("provider", "unknown"),
            constraints=ConstraintConfig.from_dict(data),
            benchmark_ticker=ticker,
            benchmark_name=name,
        )
