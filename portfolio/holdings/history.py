"""
Snapshot history — the append-only record of confirmed portfolios per lane.

Runs are laid out as ``<fund_dir>/runs/<YYYY-MM-DD>/<provider>/``; each
successful run contributes one Snapshot effective from its date.
"""
import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

from config.settings import RUN_META_FILE, RUN_OUTPUT_FILE
from portfolio.holdings.schema import Holding, Portfolio, Snapshot
from src.data.price_series import DateLike, as_date

logger = logging.getLogger(__name__)

_DATE_DIR = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def snapshots_up_to(snapshots: Sequence[Snapshot], target: DateLike) -> List[Snapshot]:
    """Snapshots dated on or before ``target``, ascending by date."""
    target = as_date(target)
    return sorted((s for s in snapshots if s.date <= target), key=lambda s: s.date)


def extract_portfolio(doc: Optional[dict]) -> Portfolio:
    """
    Recorded holdings from a run output document.

    Keeps positive weights only and merges duplicate tickers.
    """
    items = (doc or {}).get("target_portfolio")
    if not isinstance(items, list):
        return Portfolio()
    merged = {}
    for item in items:
        h = Holding.from_dict(item)
        if h is None or h.weight_pct <= 0:
            continue
        prev = merged.get(h.ticker)
        if prev is None:
            merged[h.ticker] = h
        else:
            merged[h.ticker] = Holding(h.ticker, round(prev.weight_pct + h.weight_pct, 2), prev.sector)
    return Portfolio(tuple(merged.values()))


def load_snapshots(fund_dir: Path, provider: str) -> List[Snapshot]:
    """
    Load every successful run of one lane as Snapshots, ascending by date.

    Skipped: runs without an output file, runs whose meta status is not
    ``success``, unreadable JSON, and runs with no usable holdings.
    """
    runs_root = Path(fund_dir) / "runs"
    if not runs_root.exists():
        return []

    snapshots = []
    for run_dir in sorted(p for p in runs_root.iterdir() if p.is_dir() and _DATE_DIR.match(p.name)):
        output_path = run_dir / provider / RUN_OUTPUT_FILE
        meta_path = run_dir / provider / RUN_META_FILE
        if not output_path.exists():
            continue
        if meta_path.exists():
            meta = _load_json(meta_path)
            status = meta.get("status") if isinstance(meta, dict) else None
            if isinstance(status, str) and status != "success":
                logger.debug(f"Skipping {run_dir.name}/{provider}: status={status}")
                continue
        portfolio = extract_portfolio(_load_json(output_path))
        if not len(portfolio):
            logger.warning(f"Skipping {run_dir.name}/{provider}: no usable holdings")
            continue
        try:
            run_date = as_date(run_dir.name)
        except ValueError:
            logger.warning(f"Skipping {run_dir.name}: not a calendar date")
            continue
        snapshots.append(Snapshot(date=run_date, portfolio=portfolio))

    return snapshots


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

def _load_json(path: Path) -> Optional[dict]:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Failed to load {path}: {e}")
        return None
