"""
Canonical fallback portfolio — substituted whenever repair fails.

Equal weight over a fixed reference universe, in basis points so the total
is exactly 100%.
"""
from config.settings import FALLBACK_UNIVERSE
from portfolio.holdings.schema import TOTAL_BPS, ConstraintConfig, Holding, Portfolio, bps_to_pct


def build_fallback_portfolio(config: ConstraintConfig) -> Portfolio:
    """
    Equal-weight the first N names of the reference universe.

    Weights are capped at ``max_position_pct``; leftover basis points from the
    integer split go to the first holdings. A lane asking for more positions
    than the universe holds gets the whole universe (no repeated tickers).
    """
    n = max(1, min(config.positions, len(FALLBACK_UNIVERSE)))
    selected = FALLBACK_UNIVERSE[:n]

    base, remainder = divmod(TOTAL_BPS, n)
    cap = config.max_position_bps
    weights = []
    for i in range(n):
        w = base + (1 if i < remainder else 0)
        weights.append(min(w, cap))

    return Portfolio(tuple(
        Holding(ticker=ticker, weight_pct=bps_to_pct(w), sector=sector)
        for (ticker, sector), w in zip(selected, weights)
    ))
