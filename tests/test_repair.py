"""Tests for portfolio.constraints.repair — 确定性约束修复。"""
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from portfolio.constraints.repair import (
    RepairReason,
    apportion,
    enforce_constraints,
    feasible_capacity_bps,
    repair_portfolio,
)
from portfolio.constraints.validator import validate_portfolio
from portfolio.holdings.schema import ConstraintConfig

SECTORS = [
    "Technology", "Healthcare", "Energy", "Financials", "Utilities",
    "Industrials", "Materials", "Real Estate", "Consumer Staples", "Communication Services",
    "Consumer Discretionary", "Transportation",
]


def _items(weights, sectors=None):
    """[(ticker, weight)] -> proposal dicts, one distinct sector each unless given."""
    sectors = sectors or SECTORS
    return [
        {"ticker": t, "weight_pct": w, "sector": sectors[i % len(sectors)]}
        for i, (t, w) in enumerate(weights)
    ]


@pytest.fixture
def ten_by_ten():
    return ConstraintConfig(positions=10, min_position_pct=2, max_position_pct=12, max_sector_pct=25)


class TestApportion:
    def test_exact_split(self):
        assert apportion(10000, [1, 1, 2], ["A", "B", "C"]) == [2500, 2500, 5000]

    def test_remainder_ties_go_to_smaller_key(self):
        assert apportion(10, [1, 1, 1], ["B", "A", "C"]) == [3, 4, 3]

    def test_never_exceeds_share_when_shrinking(self):
        shares = [333, 333, 334]
        parts = apportion(500, shares, ["A", "B", "C"])
        assert sum(parts) == 500
        assert all(p <= s for p, s in zip(parts, shares))

    def test_zero_inputs(self):
        assert apportion(0, [1, 2], ["A", "B"]) == [0, 0]
        assert apportion(100, [0, 0], ["A", "B"]) == [0, 0]


class TestFeasibleCapacity:
    def test_two_sectors_of_five(self):
        cfg = ConstraintConfig(positions=10, min_position_pct=5, max_position_pct=20, max_sector_pct=30)
        assert feasible_capacity_bps(["Tech"] * 5 + ["Health"] * 5, cfg) == 6000

    def test_position_cap_binds_for_small_sectors(self):
        cfg = ConstraintConfig(positions=10, min_position_pct=2, max_position_pct=10, max_sector_pct=50)
        assert feasible_capacity_bps(["A", "B", "B"], cfg) == 1000 + 2000


class TestRepairValidInput:
    def test_valid_portfolio_unchanged(self, ten_by_ten):
        items = _items([(f"T{i:02d}", 10.0) for i in range(10)], SECTORS[:5])
        result = repair_portfolio(items, ten_by_ten)

        assert not result.failed
        assert result.repaired is False
        assert result.notes == []
        assert result.portfolio.to_list() == items

    def test_idempotent(self, ten_by_ten):
        items = _items([("AAA", 28.0)] + [(f"B{i}", 8.0) for i in range(9)])
        first = repair_portfolio(items, ten_by_ten)
        second = repair_portfolio(first.portfolio.to_list(), ten_by_ten)

        assert second.portfolio == first.portfolio
        assert second.repaired is False
        assert second.notes == []

    def test_deterministic(self, ten_by_ten):
        items = _items([(f"T{i:02d}", float(i + 1)) for i in range(12)])
        a = repair_portfolio(items, ten_by_ten)
        b = repair_portfolio(list(items), ten_by_ten)
        assert a.to_dict() == b.to_dict()


class TestRepairAdjustments:
    def test_clips_position_and_redistributes(self, ten_by_ten):
        items = _items([("AAA", 28.0)] + [(f"B{i}", 8.0) for i in range(9)])
        result = repair_portfolio(items, ten_by_ten)

        assert not result.failed
        assert result.repaired is True
        assert result.portfolio.weight_of("AAA") == 12.0
        assert result.portfolio.total_weight == 100.0
        assert all(h.weight_pct <= 12.0 for h in result.portfolio)
        # 16% freed weight spread evenly; spare basis points go to the lowest tickers
        assert result.portfolio.weight_of("B0") == 9.78
        assert result.portfolio.weight_of("B8") == 9.77
        assert any(n.startswith("clipped_position_excess=16.0") for n in result.notes)
        assert validate_portfolio(result.portfolio, ten_by_ten) == []

    def test_keeps_top_n_with_ticker_tie_break(self, ten_by_ten):
        weights = [(t, 10.0) for t in "ABCDEFGH"] + [("MMM", 5.0), ("LLL", 5.0), ("KKK", 5.0), ("JJJ", 5.0)]
        result = repair_portfolio(_items(weights), ten_by_ten)

        assert not result.failed
        assert len(result.portfolio) == 10
        assert "JJJ" in result.portfolio.tickers
        assert "KKK" in result.portfolio.tickers
        assert "LLL" not in result.portfolio.tickers
        assert "trimmed_to_top_10_positions=true" in result.notes
        assert result.portfolio.weight_of("A") == 11.11
        assert result.portfolio.weight_of("JJJ") == 5.56
        assert result.portfolio.total_weight == 100.0

    def test_merges_duplicates(self):
        cfg = ConstraintConfig(positions=3, min_position_pct=2, max_position_pct=40, max_sector_pct=40)
        items = [
            {"ticker": "AAA", "weight_pct": 20, "sector": "Technology"},
            {"ticker": "BBB", "weight_pct": 30, "sector": "Healthcare"},
            {"ticker": "aaa", "weight_pct": 10, "sector": "Technology"},
            {"ticker": "CCC", "weight_pct": 40, "sector": "Energy"},
        ]
        result = repair_portfolio(items, cfg)

        assert not result.failed
        assert result.portfolio.tickers == ["AAA", "BBB", "CCC"]
        assert result.portfolio.weight_of("AAA") == 30.0
        assert "merged_duplicate_tickers=AAA" in result.notes

    def test_scales_over_cap_sector(self):
        cfg = ConstraintConfig(positions=6, min_position_pct=2, max_position_pct=30, max_sector_pct=40)
        items = _items(
            [("AAA", 30), ("BBB", 30), ("CCC", 20), ("DDD", 10), ("EEE", 5), ("FFF", 5)],
            ["Technology", "Technology", "Healthcare", "Energy", "Utilities", "Financials"],
        )
        result = repair_portfolio(items, cfg)

        assert not result.failed
        assert result.portfolio.sector_weights()["Technology"] == 40.0
        assert result.portfolio.weight_of("AAA") == 20.0
        assert result.portfolio.weight_of("CCC") == 22.5
        assert result.portfolio.weight_of("DDD") == 15.0
        assert result.portfolio.weight_of("EEE") == 11.25
        assert "sector_cap_applied=Technology" in result.notes

    def test_caps_crypto_group(self):
        cfg = ConstraintConfig(
            positions=5, min_position_pct=2, max_position_pct=30, max_sector_pct=40, max_crypto_pct=10
        )
        items = _items(
            [("BTC-USD", 25), ("ETH-USD", 15), ("AAA", 20), ("BBB", 20), ("CCC", 20)],
            ["Crypto", "Crypto", "Technology", "Healthcare", "Energy"],
        )
        result = repair_portfolio(items, cfg)

        assert not result.failed
        assert result.portfolio.weight_of("BTC-USD") == 5.83
        assert result.portfolio.weight_of("ETH-USD") == 4.17
        assert result.portfolio.weight_of("AAA") == 30.0
        assert "crypto_cap_applied=true" in result.notes
        assert validate_portfolio(result.portfolio, cfg) == []

    def test_raises_to_min_and_trims_surplus(self):
        cfg = ConstraintConfig(positions=4, min_position_pct=5, max_position_pct=50, max_sector_pct=50)
        items = _items([("A", 1), ("B", 33), ("C", 33), ("D", 33)])
        result = repair_portfolio(items, cfg)

        assert not result.failed
        assert result.portfolio.weight_of("A") == 5.0
        assert result.portfolio.weight_of("B") == 29.0
        assert result.portfolio.weight_of("C") == 33.0
        assert "raised_to_min_position=4.0%" in result.notes
        assert "trimmed_surplus=4.0%" in result.notes

    def test_drops_reserved_and_malformed(self):
        cfg = ConstraintConfig(positions=2, min_position_pct=2, max_position_pct=60, max_sector_pct=60)
        items = [
            {"ticker": "CASH", "weight_pct": 10},
            {"ticker": "", "weight_pct": 10},
            {"ticker": "XXX", "weight_pct": "abc"},
            {"ticker": "AAA", "weight_pct": 50, "sector": "Technology"},
            {"ticker": "BBB", "weight_pct": 50, "sector": "Energy"},
        ]
        result = repair_portfolio(items, cfg)

        assert not result.failed
        assert result.portfolio.tickers == ["AAA", "BBB"]
        assert "dropped_invalid_holdings=3" in result.notes


class TestRepairFailures:
    def test_empty(self, ten_by_ten):
        result = repair_portfolio([], ten_by_ten)
        assert result.failed
        assert result.portfolio is None
        assert result.reason == RepairReason.EMPTY_OR_INVALID.value

    def test_all_zero_weights(self, ten_by_ten):
        result = repair_portfolio(_items([("AAA", 0), ("BBB", 0)]), ten_by_ten)
        assert result.reason == "empty_or_invalid_portfolio"

    def test_none_input(self, ten_by_ten):
        assert repair_portfolio(None, ten_by_ten).reason == "empty_or_invalid_portfolio"

    def test_infeasible_sector_capacity(self):
        cfg = ConstraintConfig(positions=10, min_position_pct=5, max_position_pct=20, max_sector_pct=30)
        items = _items(
            [(f"T{i}", 10.0) for i in range(5)] + [(f"H{i}", 10.0) for i in range(5)],
            ["Technology"] * 5 + ["Healthcare"] * 5,
        )
        result = repair_portfolio(items, cfg)

        assert result.failed
        assert result.reason == "infeasible_sector_capacity"
        assert "feasible_capacity=60.0%" in result.notes

    def test_sector_floor_exceeds_cap(self):
        cfg = ConstraintConfig(positions=4, min_position_pct=10, max_position_pct=40, max_sector_pct=15)
        items = _items(
            [("A", 25), ("B", 25), ("C", 25), ("D", 25)],
            ["Technology", "Technology", "Energy", "Utilities"],
        )
        result = repair_portfolio(items, cfg)
        # capacity 15 + 15 + 15 < 100 is caught first
        assert result.reason == "infeasible_sector_capacity"

    def test_too_few_holdings(self, ten_by_ten):
        result = repair_portfolio(_items([("AAA", 50), ("BBB", 50)]), ten_by_ten)
        assert result.failed
        assert result.reason in ("infeasible_sector_capacity", "post_repair_constraints_failed")


class TestEnforceConstraints:
    def test_fallback_on_failure(self):
        cfg = ConstraintConfig(positions=10, min_position_pct=5, max_position_pct=20, max_sector_pct=30)
        items = _items(
            [(f"T{i}", 10.0) for i in range(5)] + [(f"H{i}", 10.0) for i in range(5)],
            ["Technology"] * 5 + ["Healthcare"] * 5,
        )
        result = enforce_constraints(items, cfg)

        assert result.failed is True
        assert result.fallback is True
        assert result.reason == "infeasible_sector_capacity"
        assert result.notes[-1] == "repair_fallback=infeasible_sector_capacity"
        assert len(result.portfolio) == 10
        assert result.portfolio.total_weight == 100.0

    def test_success_passes_through(self, ten_by_ten):
        items = _items([(f"T{i:02d}", 10.0) for i in range(10)], SECTORS[:5])
        result = enforce_constraints(items, ten_by_ten)
        assert result.fallback is False
        assert result.failed is False

    def test_result_to_dict(self, ten_by_ten):
        result = enforce_constraints([], ten_by_ten)
        d = result.to_dict()
        assert d["failed"] is True
        assert d["fallback"] is True
        assert len(d["target_portfolio"]) == 10

    def test_fallback_short_of_full_weight_is_noted(self):
        cfg = ConstraintConfig(positions=20, min_position_pct=1, max_position_pct=5, max_sector_pct=30)
        result = enforce_constraints([], cfg)

        assert result.fallback is True
        assert result.portfolio.total_weight == 80.0
        assert result.notes[-1] == "fallback_total=80.0%"


class TestCryptoInsideTightSector:
    """Every sector must land exactly on its cap while the crypto cap also binds."""

    CONFIG = ConstraintConfig(
        positions=12, min_position_pct=2, max_position_pct=12, max_sector_pct=25, max_crypto_pct=5
    )

    def _proposal(self):
        return _items(
            [
                ("A1", 10), ("A2", 10), ("A3", 10),
                ("B1", 8), ("B2", 8), ("B3", 8),
                ("BTC2", 10), ("T09", 6), ("T10", 6),
                ("D1", 8), ("D2", 8), ("D3", 8),
            ],
            ["A"] * 3 + ["B"] * 3 + ["C"] * 3 + ["D"] * 3,
        )

    def test_sector_headroom_reaches_non_crypto_members(self):
        result = repair_portfolio(self._proposal(), self.CONFIG)

        assert not result.failed, result.notes
        assert result.portfolio.weight_of("BTC2") == 5.0
        assert result.portfolio.weight_of("T09") == 10.0
        assert result.portfolio.weight_of("T10") == 10.0
        assert result.portfolio.sector_weights() == {"A": 25.0, "B": 25.0, "C": 25.0, "D": 25.0}
        assert "crypto_cap_applied=true" in result.notes
        assert validate_portfolio(result.portfolio, self.CONFIG) == []

    def test_not_replaced_by_fallback(self):
        result = enforce_constraints(self._proposal(), self.CONFIG)
        assert result.fallback is False
        assert "BTC2" in result.portfolio.tickers


def _random_feasible_case(rng):
    """
    A lane plus an N-holding proposal that has a valid repair.

    Feasible by construction: with every crypto holding at the floor, the
    remaining capacity of each sector still adds up to more than 100%.
    """
    n = rng.randint(5, 15)
    k = rng.randint(2, min(6, n))
    min_pct = rng.choice([1.0, 2.0])
    max_pos = round(rng.uniform(100.0 / n + 4, 35.0), 2)
    max_sec = round(rng.uniform(100.0 / k + 8, 60.0), 2)
    n_crypto = rng.randint(0, 2)
    max_crypto = round(rng.uniform(n_crypto * min_pct + 1, 20.0), 2)
    config = ConstraintConfig(
        positions=n, min_position_pct=min_pct, max_position_pct=max_pos,
        max_sector_pct=max_sec, max_crypto_pct=max_crypto,
    )

    crypto_slots = set(rng.sample(range(n), n_crypto))
    items = []
    for i in range(n):
        ticker = f"BTC{i}" if i in crypto_slots else f"S{i:02d}"
        items.append({
            "ticker": ticker,
            "weight_pct": round(rng.uniform(0.5, 30.0), 2),
            "sector": f"Sector{i % k}",
        })

    capacity = 0
    for s in range(k):
        members = [it for it in items if it["sector"] == f"Sector{s}"]
        crypto = sum(1 for it in members if it["ticker"].startswith("BTC"))
        if len(members) * config.min_position_bps > config.max_sector_bps:
            return None
        plain = len(members) - crypto
        capacity += min(plain * config.max_position_bps + crypto * config.min_position_bps, config.max_sector_bps)
    if capacity < 10500:
        return None
    return config, items


class TestRepairProperties:
    def test_seeded_feasible_cases_repair_validly(self):
        import random
        rng = random.Random(20260319)
        checked = 0
        failures = []
        for _ in range(300):
            case = _random_feasible_case(rng)
            if case is None:
                continue
            config, items = case
            checked += 1

            result = repair_portfolio(items, config)
            if result.failed:
                failures.append((config, result.reason, result.notes))
                continue
            assert len(result.portfolio) == config.positions
            assert validate_portfolio(result.portfolio, config) == []

            again = repair_portfolio(result.portfolio.to_list(), config)
            assert again.portfolio == result.portfolio
            assert again.repaired is False

        assert failures == []
        assert checked >= 50
