"""
批量价格获取
- Every distinct ticker fetched exactly once per computation
- Bounded worker pool (ThreadPoolExecutor) drains the ticker queue
- Alias spellings tried in order; any failure degrades to "no data"
"""
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError, as_completed
from datetime import date, timedelta
from typing import Iterable, Optional, Tuple

from config.settings import (
    PRICE_FETCH_WORKERS,
    PRICE_LOOKAHEAD_PAD_DAYS,
    PRICE_LOOKBACK_PAD_DAYS,
)
from src.data.price_series import ChartSeries, DateLike, PriceBook, as_date, symbol_aliases
from src.data.yahoo_client import YahooChartClient, yahoo_client

logger = logging.getLogger(__name__)


def price_window(inception: DateLike, asof: DateLike, today: Optional[date] = None) -> Tuple[date, date]:
    """Fetch range covering [day-before-inception, asof] with padding for non-trading days."""
    today = today or date.today()
    start = as_date(inception) - timedelta(days=PRICE_LOOKBACK_PAD_DAYS)
    end = min(today, as_date(asof) + timedelta(days=PRICE_LOOKAHEAD_PAD_DAYS))
    if end < start:
        end = start
    return start, end


def fetch_series(
    ticker: str,
    start: DateLike,
    end: DateLike,
    client: Optional[YahooChartClient] = None,
) -> Optional[ChartSeries]:
    """Fetch one ticker, trying each alias spelling until one returns data."""
    client = client or yahoo_client
    for symbol in symbol_aliases(ticker):
        try:
            series = client.get_chart(symbol, start, end)
        except Exception as e:
            logger.warning(f"{ticker}: fetch via {symbol} failed: {e}")
            series = None
        if series is not None:
            return series
    return None


def fetch_price_book(
    tickers: Iterable[str],
    start: DateLike,
    end: DateLike,
    workers: int = PRICE_FETCH_WORKERS,
    timeout: Optional[float] = None,
    client: Optional[YahooChartClient] = None,
) -> PriceBook:
    """
    批量获取价格序列

    Args:
        tickers: tickers needed by one computation (duplicates ignored)
        start, end: calendar range to request
        workers: pool size
        timeout: optional wall-clock bound for the whole fetch phase (seconds);
            tickers still pending at the deadline are recorded as no data.
            Requests already in flight are not interrupted: their worker
            threads run on (up to API_TIMEOUT x API_RETRY_TIMES) and still
            hold up interpreter exit, so this bounds the fetch phase only

    Returns:
        PriceBook with one entry per distinct ticker (None = no data)
    """
    unique = list(dict.fromkeys(t.strip() for t in tickers if t and t.strip()))
    book = PriceBook()
    if not unique:
        return book

    n_workers = max(1, min(workers, len(unique)))
    logger.info(f"Fetching prices for {len(unique)} tickers ({n_workers} workers)...")

    executor = ThreadPoolExecutor(max_workers=n_workers)
    futures = {executor.submit(fetch_series, t, start, end, client): t for t in unique}
    try:
        for future in as_completed(futures, timeout=timeout):
            ticker = futures[future]
            try:
                book.add(ticker, future.result())
            except Exception as e:
                logger.warning(f"{ticker}: fetch failed: {e}")
                book.add(ticker, None)
    except TimeoutError:
        pending = sorted(t for t in futures.values() if t not in book)
        logger.warning(f"Price fetch timed out after {timeout}s; no data for {pending}")
        for ticker in pending:
            book.add(ticker, None)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    if book.missing:
        logger.warning(f"No price data for: {book.missing}")
    logger.info(f"Fetched {len(book) - len(book.missing)}/{len(book)} tickers")
    return book
