"""
Since-inception performance for every lane (or one), using fresh prices.

用法:
    python scripts/compute_nav.py --date 2026-03-20              # all lanes, one date
    python scripts/compute_nav.py --fund fund-alpha --date 2026-03-20
    python scripts/compute_nav.py --daily                        # every arena run date
    python scripts/compute_nav.py --daily --indices              # plus reference indices

Prints JSON: {"funds": {date: {fund_id: report}}, "indices": {date: {...}}}.
Prices are fetched once per distinct ticker for the whole run.
"""
import argparse
import json
import logging
import re
import sys
from datetime import date
from pathlib import Path

# 添加项目根目录到 path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import FUNDS_DIR, PRICE_FETCH_WORKERS
from portfolio.benchmark.engine import BenchmarkEngine
from portfolio.benchmark.indices import index_returns, load_indices
from portfolio.holdings.history import load_snapshots
from portfolio.holdings.manager import discover_funds
from src.data.price_fetcher import fetch_price_book, price_window
from src.data.price_series import as_date, day_before

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', stream=sys.stderr)
logger = logging.getLogger(__name__)

_DATE_DIR = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _arena_dates(funds_dir: Path):
    runs_dir = funds_dir / "arena" / "runs"
    if not runs_dir.exists():
        return []
    return sorted(as_date(p.name) for p in runs_dir.iterdir() if p.is_dir() and _DATE_DIR.match(p.name))


def main():
    parser = argparse.ArgumentParser(description="Segment-linked NAV since inception")
    parser.add_argument("--funds-dir", type=str, default=str(FUNDS_DIR))
    parser.add_argument("--fund", type=str, help="Only this lane id")
    parser.add_argument("--date", type=str, help="Evaluation date YYYY-MM-DD (default: today)")
    parser.add_argument("--daily", action="store_true", help="Evaluate every arena run date")
    parser.add_argument("--indices", action="store_true", help="Include reference index returns")
    parser.add_argument("--workers", type=int, default=PRICE_FETCH_WORKERS)
    parser.add_argument("--timeout", type=float, help="Wall-clock limit for the price fetch (seconds)")

    args = parser.parse_args()
    funds_dir = Path(args.funds_dir)

    if args.daily:
        targets = _arena_dates(funds_dir)
    else:
        targets = [as_date(args.date) if args.date else date.today()]
    if not targets:
        print("{}")
        return

    funds = [f for f in discover_funds(funds_dir) if not args.fund or f.fund_id == args.fund]
    engines = {}
    for fund in funds:
        snapshots = load_snapshots(funds_dir / fund.fund_id, fund.provider)
        if snapshots:
            engines[fund.fund_id] = BenchmarkEngine(snapshots, fund.benchmark_ticker)
    indices = load_indices(funds_dir / "arena" / "indices.json") if args.indices else []

    if not engines:
        logger.warning("No lane has recorded snapshots")
        print("{}")
        return

    # One fetch for every lane, benchmark and index
    inception = min(e.inception_date for e in engines.values())
    tickers = []
    for engine in engines.values():
        tickers.extend(engine.required_tickers())
    tickers.extend(idx["ticker"] for idx in indices)
    start, end = price_window(inception, targets[-1])
    book = fetch_price_book(tickers, start, end, workers=args.workers, timeout=args.timeout)

    funds_out = {}
    for fund_id, engine in engines.items():
        for d, report in engine.daily_performance(targets, book=book).items():
            funds_out.setdefault(d, {})[fund_id] = report.to_dict()

    output = {"funds": funds_out}
    if indices:
        base = day_before(inception)
        output["indices"] = {d.isoformat(): index_returns(indices, book, base, d) for d in targets}

    print(json.dumps(output, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
