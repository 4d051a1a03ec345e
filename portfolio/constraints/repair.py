"""
Constraint repair engine — force a proposed weight vector into the lane's caps.

Input is whatever the research process proposed (possibly malformed); output
is either a valid Portfolio (exactly N unique holdings, each weight within
[min, max], each sector and the crypto group under cap, total exactly 100%)
or a structured failure reason. Nothing here raises for bad proposals.

All arithmetic after parsing is in integer basis points. Proportional splits
use largest-remainder apportionment with ticker order as the final
tie-break, so the same input always yields the same output.
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from config.settings import (
    REPAIR_OUTER_ROUNDS,
    REPAIR_RECONCILE_ITERATIONS,
    REPAIR_REDISTRIBUTE_ROUNDS,
    RESERVED_TICKERS,
)
from portfolio.constraints.fallback import build_fallback_portfolio
from portfolio.constraints.validator import is_crypto, validate_portfolio
from portfolio.holdings.schema import (
    TOTAL_BPS,
    UNKNOWN_SECTOR,
    ConstraintConfig,
    Holding,
    Portfolio,
    bps_to_pct,
    pct_to_bps,
)

logger = logging.getLogger(__name__)


class RepairReason(str, Enum):
    """Why a proposal could not be repaired."""
    EMPTY_OR_INVALID = "empty_or_invalid_portfolio"
    INFEASIBLE_SECTOR_CAPACITY = "infeasible_sector_capacity"
    POST_REPAIR_FAILED = "post_repair_constraints_failed"


@dataclass
class RepairResult:
    """Outcome of one repair. ``portfolio`` is None only for a bare failure."""

    portfolio: Optional[Portfolio]
    failed: bool = False
    reason: Optional[str] = None
    notes: List[str] = field(default_factory=list)
    repaired: bool = False
    fallback: bool = False

    def to_dict(self) -> dict:
        if self.failed and self.portfolio is None:
            return {"failed": True, "reason": self.reason, "notes": self.notes}
        return {
            "failed": self.failed,
            "reason": self.reason,
            "repaired": self.repaired,
            "fallback": self.fallback,
            "target_portfolio": self.portfolio.to_list() if self.portfolio else [],
            "notes": self.notes,
        }


@dataclass
class _Book:
    """Working arrays indexed by position; weights in basis points."""
    tickers: List[str]
    sectors: List[str]
    crypto: List[bool]
    weights: List[int]

    def sector_sums(self) -> Dict[str, int]:
        sums: Dict[str, int] = {}
        for sector, w in zip(self.sectors, self.weights):
            sums[sector] = sums.get(sector, 0) + w
        return sums

    def crypto_sum(self) -> int:
        return sum(w for w, c in zip(self.weights, self.crypto) if c)

    def members(self, sector: str) -> List[int]:
        return [i for i, s in enumerate(self.sectors) if s == sector]

    def crypto_members(self) -> List[int]:
        return [i for i, c in enumerate(self.crypto) if c]


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------

def repair_portfolio(
    proposed: Union[Portfolio, Iterable],
    config: ConstraintConfig,
) -> RepairResult:
    """
    Repair a proposed portfolio against ``config``.

    Steps: merge duplicates, keep top-N, feasibility check, normalise to 100%,
    apply the minimum floor, clip positions, scale over-cap sectors (and the
    crypto group), redistribute freed weight within remaining room, trim any
    surplus from the largest holdings, reconcile basis-point residue, and
    validate. Returns ``RepairResult(failed=True, portfolio=None)`` when any
    step cannot be satisfied.
    """
    notes: List[str] = []
    raw_items = list(proposed) if proposed is not None else []
    holdings = _parse(raw_items)
    if len(holdings) < len(raw_items):
        notes.append(f"dropped_invalid_holdings={len(raw_items) - len(holdings)}")

    merged, duplicates = _merge_duplicates(holdings)
    if duplicates:
        notes.append(f"merged_duplicate_tickers={','.join(duplicates)}")

    if len(merged) > config.positions:
        merged = _keep_top(merged, config.positions)
        notes.append(f"trimmed_to_top_{config.positions}_positions=true")

    if not merged or sum(w for _, w, _ in merged) <= 0:
        return _fail(RepairReason.EMPTY_OR_INVALID, notes)

    book = _Book(
        tickers=[t for t, _, _ in merged],
        sectors=[s for _, _, s in merged],
        crypto=[is_crypto(Holding(t, 0.0, s)) for t, _, s in merged],
        weights=[w for _, w, _ in merged],
    )
    original = list(zip(book.tickers, book.weights))

    capacity = feasible_capacity_bps(book.sectors, config)
    if capacity < TOTAL_BPS:
        notes.append(f"feasible_capacity={bps_to_pct(capacity)}%")
        return _fail(RepairReason.INFEASIBLE_SECTOR_CAPACITY, notes)
    floor_problem = _floor_infeasibility(book, config)
    if floor_problem:
        notes.append(floor_problem)
        return _fail(RepairReason.INFEASIBLE_SECTOR_CAPACITY, notes)

    # Normalise to exactly 100% and lift everything to the floor
    book.weights = apportion(TOTAL_BPS, book.weights, book.tickers)
    min_bps = config.min_position_bps
    lifted = sum(max(0, min_bps - w) for w in book.weights)
    book.weights = [max(w, min_bps) for w in book.weights]
    if lifted:
        notes.append(f"raised_to_min_position={bps_to_pct(lifted)}%")

    clipped_total = 0
    capped_groups: List[str] = []
    for _ in range(REPAIR_OUTER_ROUNDS):
        clipped = _clip_positions(book, config)
        clipped_total += clipped
        removed, groups = _cap_groups(book, config)
        for g in groups:
            if g not in capped_groups:
                capped_groups.append(g)

        gap = TOTAL_BPS - sum(book.weights)
        if gap > 0:
            _redistribute(book, gap, config)
        if not clipped and not removed:
            break
        if not _over_caps(book, config):
            break

    if clipped_total:
        notes.append(f"clipped_position_excess={bps_to_pct(clipped_total)}%")
    notes.extend(capped_groups)

    total = sum(book.weights)
    if total > TOTAL_BPS:
        surplus = total - TOTAL_BPS
        if not _trim_largest(book, surplus, min_bps):
            notes.append(f"untrimmable_surplus={bps_to_pct(surplus)}%")
            return _fail(RepairReason.POST_REPAIR_FAILED, notes)
        notes.append(f"trimmed_surplus={bps_to_pct(surplus)}%")

    # Also places basis points stranded by per-group rounding in redistribution
    residual = _reconcile(book, config)
    shortfall = TOTAL_BPS - sum(book.weights)
    if shortfall > 0:
        notes.append(f"unallocated_after_caps={bps_to_pct(shortfall)}%")
        return _fail(RepairReason.POST_REPAIR_FAILED, notes)
    if residual:
        notes.append(f"rounding_residual={bps_to_pct(residual)}%")

    portfolio = Portfolio(tuple(
        Holding(ticker=t, weight_pct=bps_to_pct(w), sector=s)
        for t, w, s in zip(book.tickers, book.weights, book.sectors)
    ))
    errors = validate_portfolio(portfolio, config)
    if errors:
        notes.append(f"validation={';'.join(errors)}")
        return _fail(RepairReason.POST_REPAIR_FAILED, notes)

    changed = bool(notes) or list(zip(book.tickers, book.weights)) != original
    if changed:
        logger.info(f"Portfolio repaired: {'; '.join(notes) or 'weights adjusted'}")
    return RepairResult(portfolio=portfolio, notes=notes, repaired=changed)


def enforce_constraints(
    proposed: Union[Portfolio, Iterable],
    config: ConstraintConfig,
) -> RepairResult:
    """Repair, substituting the canonical fallback portfolio on failure."""
    result = repair_portfolio(proposed, config)
    if not result.failed:
        return result

    fallback = build_fallback_portfolio(config)
    notes = result.notes + [f"repair_fallback={result.reason}"]
    if fallback.total_weight != 100.0:
        notes.append(f"fallback_total={fallback.total_weight}%")
    logger.warning(f"Repair failed ({result.reason}); substituting fallback portfolio")
    return RepairResult(
        portfolio=fallback,
        failed=True,
        reason=result.reason,
        notes=notes,
        repaired=True,
        fallback=True,
    )


def feasible_capacity_bps(sectors: Sequence[str], config: ConstraintConfig) -> int:
    """Most weight the sector mix can hold: sum of min(count * max_position, max_sector)."""
    counts = Counter(sectors)
    return sum(
        min(count * config.max_position_bps, config.max_sector_bps)
        for count in counts.values()
    )


def apportion(total: int, shares: Sequence[int], keys: Sequence[str]) -> List[int]:
    """
    Split ``total`` integer units proportionally to ``shares``.

    Largest-remainder method; ties go to the smaller key. When
    ``total <= sum(shares)`` no part exceeds its share.
    """
    denom = sum(shares)
    if total <= 0 or denom <= 0:
        return [0] * len(shares)
    parts = [total * s // denom for s in shares]
    remainders = [total * s % denom for s in shares]
    left = total - sum(parts)
    order = sorted(range(len(shares)), key=lambda i: (-remainders[i], keys[i]))
    for i in order[:left]:
        parts[i] += 1
    return parts


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def _parse(items: Sequence) -> List[Holding]:
    holdings = []
    for item in items:
        h = item if isinstance(item, Holding) else Holding.from_dict(item)
        if h is None or h.ticker.upper() in RESERVED_TICKERS:
            continue
        holdings.append(h)
    return holdings


def _merge_duplicates(holdings: List[Holding]) -> Tuple[List[Tuple[str, int, str]], List[str]]:
    """Sum weights per ticker, keeping first-seen order and the first known sector."""
    merged: Dict[str, List] = {}
    duplicates = []
    for h in holdings:
        bps = pct_to_bps(h.weight_pct)
        entry = merged.get(h.ticker)
        if entry is None:
            merged[h.ticker] = [h.ticker, bps, h.sector]
            continue
        if h.ticker not in duplicates:
            duplicates.append(h.ticker)
        entry[1] += bps
        if entry[2] == UNKNOWN_SECTOR and h.sector != UNKNOWN_SECTOR:
            entry[2] = h.sector
    return [tuple(v) for v in merged.values()], duplicates


def _keep_top(merged: List[Tuple[str, int, str]], n: int) -> List[Tuple[str, int, str]]:
    """Top-n by weight (ticker ascending on ties), original order preserved."""
    ranked = sorted(merged, key=lambda x: (-x[1], x[0]))
    keep = {t for t, _, _ in ranked[:n]}
    return [m for m in merged if m[0] in keep]


def _floor_infeasibility(book: _Book, config: ConstraintConfig) -> Optional[str]:
    min_bps = config.min_position_bps
    for sector, count in sorted(Counter(book.sectors).items()):
        if count * min_bps > config.max_sector_bps:
            return f"sector_floor_exceeds_cap={sector}"
    if sum(book.crypto) * min_bps > config.max_crypto_bps:
        return "crypto_floor_exceeds_cap=true"
    return None


def _clip_positions(book: _Book, config: ConstraintConfig) -> int:
    cap = config.max_position_bps
    excess = 0
    for i, w in enumerate(book.weights):
        if w > cap:
            excess += w - cap
            book.weights[i] = cap
    return excess


def _scale_group_down(book: _Book, idx: List[int], cap: int, min_bps: int) -> int:
    """Cut a group's weight above the floor proportionally until it sits at ``cap``."""
    current = sum(book.weights[i] for i in idx)
    need = current - cap
    if need <= 0:
        return 0
    removable = [max(0, book.weights[i] - min_bps) for i in idx]
    if sum(removable) <= need:
        cuts = removable
    else:
        cuts = apportion(need, removable, [book.tickers[i] for i in idx])
    for i, cut in zip(idx, cuts):
        book.weights[i] -= cut
    return sum(cuts)


def _cap_groups(book: _Book, config: ConstraintConfig) -> Tuple[int, List[str]]:
    """Scale over-cap sectors, then the crypto group, down to their caps."""
    min_bps = config.min_position_bps
    removed = 0
    groups = []
    for sector, total in sorted(book.sector_sums().items()):
        if total <= config.max_sector_bps:
            continue
        removed += _scale_group_down(book, book.members(sector), config.max_sector_bps, min_bps)
        groups.append(f"sector_cap_applied={sector}")
    if book.crypto_sum() > config.max_crypto_bps:
        removed += _scale_group_down(book, book.crypto_members(), config.max_crypto_bps, min_bps)
        groups.append("crypto_cap_applied=true")
    return removed, groups


def _bound_group(book: _Book, rooms: List[int], idx: List[int], headroom: int) -> None:
    """Apportion ``headroom`` over the group's rooms when they exceed it."""
    member_rooms = [rooms[i] for i in idx]
    if sum(member_rooms) > headroom:
        scaled = apportion(headroom, member_rooms, [book.tickers[i] for i in idx])
        for i, r in zip(idx, scaled):
            rooms[i] = r


def _rooms(book: _Book, config: ConstraintConfig) -> List[int]:
    """
    Basis points each holding can still take this round.

    Position headroom, bounded first by the crypto group's headroom and then
    by each sector's, so sector headroom only goes to members that can use it.
    """
    rooms = [max(0, config.max_position_bps - w) for w in book.weights]
    idx = book.crypto_members()
    if idx:
        _bound_group(book, rooms, idx, max(0, config.max_crypto_bps - book.crypto_sum()))
    for sector, total in sorted(book.sector_sums().items()):
        _bound_group(book, rooms, book.members(sector), max(0, config.max_sector_bps - total))
    return rooms


def _redistribute(book: _Book, amount: int, config: ConstraintConfig) -> int:
    """Hand ``amount`` bps to holdings in proportion to room; returns what is left."""
    remaining = amount
    for _ in range(REPAIR_REDISTRIBUTE_ROUNDS):
        if remaining <= 0:
            break
        rooms = _rooms(book, config)
        total_room = sum(rooms)
        if total_room <= 0:
            break
        delta = min(remaining, total_room)
        for i, add in enumerate(apportion(delta, rooms, book.tickers)):
            book.weights[i] += add
        remaining -= delta
    return remaining


def _over_caps(book: _Book, config: ConstraintConfig) -> bool:
    if any(w > config.max_position_bps for w in book.weights):
        return True
    if any(total > config.max_sector_bps for total in book.sector_sums().values()):
        return True
    return book.crypto_sum() > config.max_crypto_bps


def _trim_largest(book: _Book, amount: int, min_bps: int) -> bool:
    """Cut ``amount`` from the largest holdings (ticker asc on ties), never below the floor."""
    remaining = amount
    order = sorted(range(len(book.weights)), key=lambda i: (-book.weights[i], book.tickers[i]))
    for i in order:
        if remaining <= 0:
            break
        cut = min(max(0, book.weights[i] - min_bps), remaining)
        book.weights[i] -= cut
        remaining -= cut
    return remaining <= 0


def _reconcile(book: _Book, config: ConstraintConfig) -> int:
    """Nudge single basis points until the total is exactly 100%; returns the residue fixed."""
    residual = TOTAL_BPS - sum(book.weights)
    fixed = 0
    for _ in range(REPAIR_RECONCILE_ITERATIONS):
        if residual == 0:
            break
        sector_sums = book.sector_sums()
        crypto_sum = book.crypto_sum()
        if residual > 0:
            order = sorted(range(len(book.weights)), key=lambda i: (book.weights[i], book.tickers[i]))
            candidate = next((
                i for i in order
                if book.weights[i] + 1 <= config.max_position_bps
                and sector_sums[book.sectors[i]] + 1 <= config.max_sector_bps
                and (not book.crypto[i] or crypto_sum + 1 <= config.max_crypto_bps)
            ), None)
            step = 1
        else:
            order = sorted(range(len(book.weights)), key=lambda i: (-book.weights[i], book.tickers[i]))
            candidate = next((
                i for i in order if book.weights[i] - 1 >= config.min_position_bps
            ), None)
            step = -1
        if candidate is None:
            break
        book.weights[candidate] += step
        residual -= step
        fixed += abs(step)
    return fixed


def _fail(reason: RepairReason, notes: List[str]) -> RepairResult:
    logger.info(f"Repair failed: {reason.value} ({'; '.join(notes)})")
    return RepairResult(portfolio=None, failed=True, reason=reason.value, notes=notes, repaired=True)
