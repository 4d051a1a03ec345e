"""
Lane manager — fund configs and recorded run documents.

Each lane lives in ``<FUNDS_DIR>/fund-*/`` with a ``fund.config.json``
holding its caps and benchmark. Run documents carry the proposed
``target_portfolio`` that the repair engine turns into the recorded one.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from config.settings import FUND_CONFIG_FILE, FUNDS_DIR
from portfolio.constraints.repair import enforce_constraints
from portfolio.constraints.validator import constraints_check
from portfolio.holdings.schema import ConstraintConfig, FundConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Fund configs
# ---------------------------------------------------------------------------

def load_fund_config(fund_dir: Path) -> Optional[FundConfig]:
    """Load one lane's config; None when missing, unreadable, or invalid."""
    fund_dir = Path(fund_dir)
    path = fund_dir / FUND_CONFIG_FILE
    if not path.exists():
        return None
    try:
        with open(path, "r") as f:
            data = json.load(f)
        return FundConfig.from_dict(fund_dir.name, data)
    except (json.JSONDecodeError, OSError) as e:
        logger.error(f"Failed to load fund config {path}: {e}")
        return None
    except (TypeError, ValueError, AttributeError) as e:
        logger.error(f"Invalid fund config {path}: {e}")
        return None


def discover_funds(funds_dir: Path = FUNDS_DIR) -> List[FundConfig]:
    """All lanes under ``funds_dir`` (directories named fund-*), sorted by id."""
    funds_dir = Path(funds_dir)
    if not funds_dir.exists():
        return []
    configs = []
    for entry in sorted(funds_dir.iterdir()):
        if not entry.is_dir() or not entry.name.startswith("fund-"):
            continue
        config = load_fund_config(entry)
        if config is not None:
            configs.append(config)
    return configs


# ---------------------------------------------------------------------------
# Run documents
# ---------------------------------------------------------------------------

def apply_repair(doc: Dict, constraints: ConstraintConfig) -> Dict:
    """
    Replace a run document's proposed portfolio with the repaired one.

    Adds ``constraints_check`` (with repair notes appended) and a
    ``repair`` block ``{failed, reason, repaired, fallback, notes}``.
    The input dict is not modified.
    """
    doc = dict(doc or {})
    proposed = doc.get("target_portfolio")
    result = enforce_constraints(proposed if isinstance(proposed, list) else [], constraints)

    check = constraints_check(result.portfolio, constraints)
    existing = str((doc.get("constraints_check") or {}).get("notes") or "").strip()
    parts = [p for p in (existing, "; ".join(result.notes), check["notes"]) if p]
    check["notes"] = "; ".join(parts)

    doc["target_portfolio"] = result.portfolio.to_list()
    doc["constraints_check"] = check
    doc["repair"] = {
        "failed": result.failed,
        "reason": result.reason,
        "repaired": result.repaired,
        "fallback": result.fallback,
        "notes": result.notes,
    }
    return doc
