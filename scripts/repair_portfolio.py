"""
Repair a proposed run document against its lane's caps.

用法:
    python scripts/repair_portfolio.py --input proposal.json --fund fund-alpha
    python scripts/repair_portfolio.py --input proposal.json --positions 10 --max-sector 30
    cat proposal.json | python scripts/repair_portfolio.py --fund fund-alpha --output repaired.json

The repaired document (with ``constraints_check`` and ``repair`` blocks) is
printed as JSON, or written to --output.
"""
import argparse
import json
import logging
import sys
from pathlib import Path

# 添加项目根目录到 path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config.settings import FUNDS_DIR
from portfolio.holdings.manager import apply_repair, load_fund_config
from portfolio.holdings.schema import ConstraintConfig

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', stream=sys.stderr)
logger = logging.getLogger(__name__)


def _build_constraints(args) -> ConstraintConfig:
    base = {}
    if args.fund:
        fund = load_fund_config(Path(args.funds_dir) / args.fund)
        if fund is None:
            raise SystemExit(f"Unknown or invalid fund: {args.fund}")
        base = fund.constraints.to_dict()
    overrides = {
        "positions": args.positions,
        "min_position_pct": args.min_position,
        "max_position_pct": args.max_position,
        "max_sector_pct": args.max_sector,
        "max_crypto_pct": args.max_crypto,
    }
    base.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return ConstraintConfig.from_dict(base)
    except ValueError as e:
        raise SystemExit(str(e))


def main():
    parser = argparse.ArgumentParser(description="Deterministic portfolio constraint repair")
    parser.add_argument("--input", type=str, help="Run document JSON (default: stdin)")
    parser.add_argument("--output", type=str, help="Write repaired document here")
    parser.add_argument("--fund", type=str, help="Lane id under the funds directory (e.g. fund-alpha)")
    parser.add_argument("--funds-dir", type=str, default=str(FUNDS_DIR))
    parser.add_argument("--positions", type=int)
    parser.add_argument("--min-position", type=float)
    parser.add_argument("--max-position", type=float)
    parser.add_argument("--max-sector", type=float)
    parser.add_argument("--max-crypto", type=float)

    args = parser.parse_args()
    constraints = _build_constraints(args)

    raw = Path(args.input).read_text() if args.input else sys.stdin.read()
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise SystemExit(f"Input is not valid JSON: {e}")
    if isinstance(doc, list):
        doc = {"target_portfolio": doc}

    repaired = apply_repair(doc, constraints)
    repair = repaired["repair"]
    if repair["fallback"]:
        logger.warning(f"Fallback portfolio used: {repair['reason']}")
    elif repair["repaired"]:
        logger.info(f"Auto-corrected: {'; '.join(repair['notes'])}")

    text = json.dumps(repaired, indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(text + "\n")
        logger.info(f"Wrote {args.output}")
    else:
        print(text)


if __name__ == "__main__":
    main()
