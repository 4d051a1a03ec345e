"""
全局测试守卫: 防止测试改动真实的 lane 运行记录。

Run documents under funds/ are the append-only history that NAV is computed
from. The fixture records every run file before the session and reports any
that disappeared or changed afterwards (warning only; tests work in tmp_path).
"""
import logging
import sys
import warnings
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import FUNDS_DIR
from src.data.price_series import ChartSeries, PriceBook

logger = logging.getLogger(__name__)


def _snapshot_run_files() -> dict:
    """Relative path -> mtime for every file under funds/*/runs/."""
    files = {}
    if not FUNDS_DIR.exists():
        return files
    for runs_dir in FUNDS_DIR.glob("*/runs"):
        for f in runs_dir.rglob("*"):
            if f.is_file():
                files[str(f.relative_to(FUNDS_DIR))] = f.stat().st_mtime
    return files


@pytest.fixture(autouse=True, scope="session")
def guard_run_history():
    before = _snapshot_run_files()
    yield
    after = _snapshot_run_files()
    deleted = set(before) - set(after)
    modified = {p for p in before if p in after and after[p] != before[p]}
    if deleted or modified:
        msg = f"测试期间 funds/ 运行记录被改动: deleted={sorted(deleted)}, modified={sorted(modified)}"
        logger.error(msg)
        warnings.warn(msg, UserWarning)


def make_book(prices: dict) -> PriceBook:
    """{ticker: {date: close}} -> PriceBook; a None value marks a ticker with no data."""
    book = PriceBook()
    for ticker, closes in prices.items():
        if closes is None:
            book.add(ticker, None)
            continue
        records = [{"date": d, "close": c} for d, c in closes.items()]
        book.add(ticker, ChartSeries.from_records(ticker, records))
    return book


@pytest.fixture
def price_book():
    """Factory fixture: price_book({"AAA": {"2026-01-02": 100.0}})"""
    return make_book
