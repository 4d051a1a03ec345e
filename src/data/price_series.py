"""
Price alignment — "close of ticker T on or before date D".

- ChartSeries: date-ordered daily closes for one ticker (pandas-backed)
- PriceBook: per-computation ticker → series lookup, alias-aware
- symbol_aliases: dot vs. hyphen class-share spellings (BRK.B / BRK-B)

Series live only for one computation; nothing here is cached across runs.
"""
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime, pd.Timestamp]


def as_date(value: DateLike) -> date:
    """Coerce an ISO string / datetime / Timestamp into a calendar date."""
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value).strip()[:10], "%Y-%m-%d").date()


def day_before(value: DateLike) -> date:
    return as_date(value) - timedelta(days=1)


def symbol_aliases(ticker: str) -> List[str]:
    """
    Spellings to try for one ticker: as given, then dot→hyphen, then hyphen→dot.

    >>> symbol_aliases("BRK.B")
    ['BRK.B', 'BRK-B']
    """
    t = str(ticker or "").strip()
    if not t:
        return []
    out = [t]
    if "." in t:
        out.append(t.replace(".", "-"))
    if "-" in t:
        out.append(t.replace("-", "."))
    # dict preserves order while dropping duplicates
    return list(dict.fromkeys(out))


@dataclass(frozen=True)
class PricePoint:
    """A single resolved close."""
    ticker: str
    date: date
    close: float

    def to_dict(self) -> dict:
        return {"ticker": self.ticker, "date": self.date.isoformat(), "close": self.close}


class ChartSeries:
    """Daily closes for one symbol, ascending by date, closes strictly positive."""

    def __init__(self, symbol: str, closes: pd.Series):
        self.symbol = symbol
        closes = closes[~closes.index.duplicated(keep="last")].sort_index()
        self.closes = closes[(closes > 0) & closes.notna()]

    @classmethod
    def from_records(cls, symbol: str, records: Iterable[dict]) -> Optional["ChartSeries"]:
        """Build from [{date, close}, ...]; returns None when nothing usable remains."""
        df = pd.DataFrame(list(records))
        if df.empty or "date" not in df.columns or "close" not in df.columns:
            return None
        df["date"] = pd.to_datetime(df["date"], errors="coerce").dt.normalize()
        df["close"] = pd.to_numeric(df["close"], errors="coerce")
        df = df.dropna(subset=["date", "close"])
        if df.empty:
            return None
        series = cls(symbol, df.set_index("date")["close"])
        return series if len(series) else None

    def __len__(self) -> int:
        return len(self.closes)

    @property
    def first_date(self) -> Optional[date]:
        return self.closes.index[0].date() if len(self) else None

    @property
    def last_date(self) -> Optional[date]:
        return self.closes.index[-1].date() if len(self) else None

    def close_on_or_before(self, target: DateLike) -> Optional[PricePoint]:
        """Latest close whose date is <= target (binary search over the index)."""
        if not len(self):
            return None
        ts = pd.Timestamp(as_date(target))
        idx = int(self.closes.index.searchsorted(ts, side="right")) - 1
        if idx < 0:
            return None
        close = float(self.closes.iloc[idx])
        if not math.isfinite(close) or close <= 0:
            return None
        return PricePoint(self.symbol, self.closes.index[idx].date(), close)


class PriceBook:
    """
    Ticker → ChartSeries lookup for one computation.

    A ticker mapped to None was fetched and had no data; lookups degrade to None.
    """

    def __init__(self, series: Optional[Dict[str, Optional[ChartSeries]]] = None):
        self._series: Dict[str, Optional[ChartSeries]] = dict(series or {})

    def add(self, ticker: str, series: Optional[ChartSeries]) -> None:
        self._series[ticker] = series

    def __contains__(self, ticker: str) -> bool:
        return ticker in self._series

    def __len__(self) -> int:
        return len(self._series)

    @property
    def tickers(self) -> List[str]:
        return sorted(self._series)

    @property
    def missing(self) -> List[str]:
        """Tickers that were requested but have no usable series."""
        return sorted(t for t, s in self._series.items() if s is None)

    def series_for(self, ticker: str) -> Optional[ChartSeries]:
        for symbol in symbol_aliases(ticker):
            series = self._series.get(symbol)
            if series is not None:
                return series
        return None

    def resolve(self, ticker: str, target: DateLike) -> Optional[PricePoint]:
        series = self.series_for(ticker)
        if series is None:
            return None
        point = series.close_on_or_before(target)
        if point is None:
            return None
        return PricePoint(ticker, point.date, point.close)
