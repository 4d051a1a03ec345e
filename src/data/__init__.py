# Data layer modules
from .price_series import (
    ChartSeries,
    PriceBook,
    PricePoint,
    as_date,
    day_before,
    symbol_aliases,
)
from .yahoo_client import YahooChartClient, parse_chart_payload, yahoo_client
from .price_fetcher import (
    fetch_price_book,
    fetch_series,
    price_window,
)
