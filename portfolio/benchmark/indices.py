"""
Reference index returns — plain point-to-point returns since a base date.

Shown next to the funds so every lane can be compared against the same
market backdrop (e.g. SPY, QQQ, IWM) over the arena's lifetime.
"""
import json
import logging
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional

from config.settings import INDICES_FILE
from src.data.price_series import DateLike, PriceBook, as_date

logger = logging.getLogger(__name__)


def load_indices(path: Path = INDICES_FILE) -> List[Dict]:
    """Load [{ticker, name}] from the arena indices file; [] if absent or unreadable."""
    if not path.exists():
        return []
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Failed to load indices from {path}: {e}")
        return []
    if not isinstance(data, list):
        return []
    return [d for d in data if isinstance(d, dict) and d.get("ticker")]


def index_returns(
    indices: List[Dict],
    book: PriceBook,
    base_date: DateLike,
    asof: DateLike,
) -> Dict:
    """
    Return of each index from the close on/before ``base_date`` to the close
    on/before ``asof``.

    Returns:
        {
            "asof_price_date": earliest resolved end date (or None),
            "items": [{"ticker", "name", "return_pct" | None}, ...],
        }
    """
    base_date = as_date(base_date)
    asof = as_date(asof)
    items = []
    asof_min: Optional[date] = None

    for idx in indices:
        ticker = idx["ticker"]
        name = idx.get("name") or ticker
        start = book.resolve(ticker, base_date)
        end = book.resolve(ticker, asof)
        if start is None or end is None:
            items.append({"ticker": ticker, "name": name, "return_pct": None})
            continue
        items.append({
            "ticker": ticker,
            "name": name,
            "return_pct": round((end.close / start.close - 1) * 100, 2),
        })
        if asof_min is None or end.date < asof_min:
            asof_min = end.date

    return {
        "asof_price_date": asof_min.isoformat() if asof_min else None,
        "items": items,
    }
