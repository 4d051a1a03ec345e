"""
Benchmark comparison engine — segment-linked NAV since inception vs a benchmark.

Each recorded snapshot defines a segment running until the next snapshot
(or the evaluation date). Segment returns are weight-averaged over the
holdings that have prices on an aligned window, then chained into a NAV
starting at 100. The benchmark is measured on exactly the same windows.

Gracefully degrades on missing prices: coverage drops, and a segment with
no covered weight makes the whole evaluation "no data" (None).
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from portfolio.holdings.history import snapshots_up_to
from portfolio.holdings.schema import Snapshot
from src.data.price_fetcher import fetch_price_book, price_window
from src.data.price_series import DateLike, PriceBook, as_date, day_before

logger = logging.getLogger(__name__)

NAV_BASE = 100.0


@dataclass
class PerformanceReport:
    """Since-inception performance for one fund as of one date."""

    inception_date: date
    asof_portfolio_date: date
    asof_price_date: Optional[date]
    fund_return_pct: float
    benchmark_return_pct: Optional[float]
    excess_return_pct: Optional[float]
    covered_weight_pct: float
    benchmark_covered_weight_pct: float
    benchmark_ticker: Optional[str] = None
    segments: int = 0

    def to_dict(self) -> dict:
        return {
            "inception_date": self.inception_date.isoformat(),
            "asof_portfolio_date": self.asof_portfolio_date.isoformat(),
            "asof_price_date": self.asof_price_date.isoformat() if self.asof_price_date else None,
            "fund_return_pct": self.fund_return_pct,
            "benchmark_ticker": self.benchmark_ticker,
            "benchmark_return_pct": self.benchmark_return_pct,
            "excess_return_pct": self.excess_return_pct,
            "covered_weight_pct": self.covered_weight_pct,
            "benchmark_covered_weight_pct": self.benchmark_covered_weight_pct,
            "segments": self.segments,
        }


@dataclass(frozen=True)
class Segment:
    """One fixed holding set between two boundary dates."""
    start: date
    end: date
    holdings: Tuple[Tuple[str, float], ...]


def _segment_holdings(snapshot: Snapshot) -> Tuple[Tuple[str, float], ...]:
    """Positive weights per ticker, duplicates summed, first-seen order."""
    weights: Dict[str, float] = {}
    for h in snapshot.portfolio:
        if h.weight_pct <= 0:
            continue
        key = h.ticker.strip().upper()
        weights[key] = weights.get(key, 0.0) + h.weight_pct
    return tuple(weights.items())


def build_segments(snapshots: Sequence[Snapshot], target: DateLike) -> List[Segment]:
    """
    Segments for an evaluation on ``target``.

    Consecutive snapshots bound each segment; the last snapshot runs on to
    ``target`` when it is later. The first segment starts the calendar day
    before the first snapshot so day-one entry pricing is captured. No
    snapshot on or before ``target`` means no segments.
    """
    target = as_date(target)
    applicable = snapshots_up_to(snapshots, target)
    if not applicable:
        return []

    spans = []
    for i in range(len(applicable) - 1):
        spans.append((applicable[i], applicable[i + 1].date))
    last = applicable[-1]
    if target > last.date:
        spans.append((last, target))
    elif not spans:
        spans.append((applicable[0], target))

    segments = []
    for i, (snap, end) in enumerate(spans):
        start = day_before(snap.date) if i == 0 else snap.date
        segments.append(Segment(start=start, end=end, holdings=_segment_holdings(snap)))
    return segments


def _window_return(book: PriceBook, ticker: str, start: date, end: date) -> Optional[float]:
    """Percent return between the closes on/before start and end."""
    p0 = book.resolve(ticker, start)
    p1 = book.resolve(ticker, end)
    if p0 is None or p1 is None:
        return None
    return (p1.close / p0.close - 1) * 100


def compute_performance(
    snapshots: Sequence[Snapshot],
    book: PriceBook,
    target: DateLike,
    benchmark_ticker: Optional[str] = None,
) -> Optional[PerformanceReport]:
    """
    NAV-style return from the first snapshot to ``target``.

    Returns None when no snapshot precedes ``target`` or any segment has
    zero covered weight. The benchmark, once unresolvable for a segment,
    stays unavailable for the rest of the computation.
    """
    target = as_date(target)
    segments = build_segments(snapshots, target)
    if not segments:
        return None

    applicable = snapshots_up_to(snapshots, target)
    nav = NAV_BASE
    bench_nav = NAV_BASE
    bench_ok = bool(benchmark_ticker)
    min_coverage: Optional[float] = None
    asof_price_date: Optional[date] = None

    for seg in segments:
        leg = []
        for ticker, weight in seg.holdings:
            start = book.resolve(ticker, seg.start)
            end = book.resolve(ticker, seg.end)
            if start is None or end is None:
                continue
            leg.append((ticker, weight, start.date, end.date))

        if not leg:
            logger.info(f"No priced holdings for segment {seg.start} -> {seg.end}")
            return None

        # Align on the earliest boundary dates so no stale series advances the window
        aligned_start = min(x[2] for x in leg)
        aligned_end = min(x[3] for x in leg)
        if bench_ok:
            b_start = book.resolve(benchmark_ticker, seg.start)
            b_end = book.resolve(benchmark_ticker, seg.end)
            if b_start is not None and b_end is not None:
                aligned_start = min(aligned_start, b_start.date)
                aligned_end = min(aligned_end, b_end.date)
        if aligned_end < aligned_start:
            aligned_start = aligned_end

        covered = 0.0
        weighted = 0.0
        for ticker, weight, _, _ in leg:
            ret = _window_return(book, ticker, aligned_start, aligned_end)
            if ret is None:
                continue
            covered += weight
            weighted += weight * ret

        if bench_ok:
            bench_ret = _window_return(book, benchmark_ticker, aligned_start, aligned_end)
            if bench_ret is None:
                logger.info(f"Benchmark {benchmark_ticker} unavailable from {aligned_start}; dropping it")
                bench_ok = False
            else:
                bench_nav *= 1 + bench_ret / 100

        if covered <= 0:
            logger.info(f"Zero covered weight for segment {aligned_start} -> {aligned_end}")
            return None

        nav *= 1 + (weighted / covered) / 100
        min_coverage = covered if min_coverage is None else min(min_coverage, covered)
        asof_price_date = aligned_end

    fund_return = round((nav / NAV_BASE - 1) * 100, 2)
    bench_return = round((bench_nav / NAV_BASE - 1) * 100, 2) if bench_ok else None
    coverage = round(min_coverage or 0.0, 2)

    return PerformanceReport(
        inception_date=applicable[0].date,
        asof_portfolio_date=applicable[-1].date,
        asof_price_date=asof_price_date,
        fund_return_pct=fund_return,
        benchmark_return_pct=bench_return,
        excess_return_pct=round(fund_return - bench_return, 2) if bench_return is not None else None,
        covered_weight_pct=coverage,
        benchmark_covered_weight_pct=coverage if bench_ok else 0.0,
        benchmark_ticker=benchmark_ticker or None,
        segments=len(segments),
    )


class BenchmarkEngine:
    """Compare one fund's recorded history against its benchmark."""

    def __init__(
        self,
        snapshots: Iterable[Snapshot],
        benchmark_ticker: Optional[str] = None,
        fetcher: Callable[..., PriceBook] = fetch_price_book,
    ):
        self.snapshots = sorted(snapshots, key=lambda s: s.date)
        self.benchmark_ticker = benchmark_ticker
        self._fetcher = fetcher

    @property
    def inception_date(self) -> Optional[date]:
        return self.snapshots[0].date if self.snapshots else None

    def required_tickers(self, asof: Optional[DateLike] = None) -> List[str]:
        """Every distinct ticker needed up to ``asof`` (benchmark included)."""
        snaps = snapshots_up_to(self.snapshots, asof) if asof is not None else self.snapshots
        tickers = []
        for snap in snaps:
            tickers.extend(t for t, _ in _segment_holdings(snap))
        if self.benchmark_ticker:
            tickers.append(self.benchmark_ticker)
        return list(dict.fromkeys(tickers))

    def load_prices(self, asof: DateLike) -> PriceBook:
        """Fetch every needed series once, fresh for this computation."""
        if self.inception_date is None:
            return PriceBook()
        start, end = price_window(self.inception_date, asof)
        return self._fetcher(self.required_tickers(asof), start, end)

    def performance(self, asof: DateLike, book: Optional[PriceBook] = None) -> Optional[PerformanceReport]:
        asof = as_date(asof)
        if self.inception_date is None or asof < self.inception_date:
            return None
        book = book if book is not None else self.load_prices(asof)
        return compute_performance(self.snapshots, book, asof, self.benchmark_ticker)

    def daily_performance(
        self, dates: Iterable[DateLike], book: Optional[PriceBook] = None
    ) -> Dict[str, PerformanceReport]:
        """
        One report per evaluation date, keyed by ISO date.

        Dates before inception or without data are omitted. Prices are
        fetched once for the latest date and shared by every evaluation.
        """
        targets = sorted({as_date(d) for d in dates})
        if self.inception_date is None:
            return {}
        targets = [d for d in targets if d >= self.inception_date]
        if not targets:
            return {}

        book = book if book is not None else self.load_prices(targets[-1])
        results = {}
        for d in targets:
            report = compute_performance(self.snapshots, book, d, self.benchmark_ticker)
            if report is not None:
                results[d.isoformat()] = report
        return results
