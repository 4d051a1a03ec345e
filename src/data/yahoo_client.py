"""
Yahoo chart API 客户端
- Daily closes only (adjusted when available)
- 错误重试 (429 / timeout)
- Fail soft: every failure is logged and returned as None
"""
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import numpy as np
import pandas as pd
import requests

from config.settings import (
    API_CALL_INTERVAL,
    API_RETRY_TIMES,
    API_TIMEOUT,
    USER_AGENT,
    YAHOO_CHART_URL,
)
from src.data.price_series import ChartSeries, DateLike, as_date

logger = logging.getLogger(__name__)


def _epoch(value: DateLike) -> int:
    d = as_date(value)
    return int(datetime(d.year, d.month, d.day, tzinfo=timezone.utc).timestamp())


def parse_chart_payload(symbol: str, payload: Any) -> Optional[ChartSeries]:
    """
    Turn a chart response into a ChartSeries.

    Expects ``chart.result[0]`` with ``timestamp`` and either
    ``indicators.adjclose[0].adjclose`` or ``indicators.quote[0].close``.
    Null, non-finite and non-positive closes are dropped.
    """
    try:
        result = payload["chart"]["result"][0]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(result, dict):
        return None

    timestamps = result.get("timestamp") or []
    indicators = result.get("indicators") or {}
    closes = None
    try:
        closes = indicators["adjclose"][0]["adjclose"]
    except (KeyError, IndexError, TypeError):
        pass
    if not closes:
        try:
            closes = indicators["quote"][0]["close"]
        except (KeyError, IndexError, TypeError):
            closes = None
    if not isinstance(timestamps, list) or not isinstance(closes, list):
        return None

    n = min(len(timestamps), len(closes))
    if n == 0:
        return None

    values = pd.to_numeric(pd.Series(closes[:n], dtype="object"), errors="coerce").to_numpy(dtype=float)
    stamps = pd.to_numeric(pd.Series(timestamps[:n], dtype="object"), errors="coerce").to_numpy(dtype=float)
    keep = np.isfinite(values) & (values > 0) & np.isfinite(stamps)
    if not keep.any():
        return None

    dates = pd.to_datetime(stamps[keep], unit="s", utc=True).tz_localize(None).normalize()
    series = ChartSeries(symbol, pd.Series(values[keep], index=dates))
    return series if len(series) else None


class YahooChartClient:
    """Yahoo chart API 客户端 (thread-safe throttle, shared across fetch workers)"""

    def __init__(self, base_url: str = YAHOO_CHART_URL, call_interval: float = API_CALL_INTERVAL):
        self.base_url = base_url.rstrip("/")
        self.call_interval = call_interval
        self._last_call_time = 0.0
        self._lock = threading.Lock()

    def _rate_limit(self):
        """API 限流控制"""
        if self.call_interval <= 0:
            return
        with self._lock:
            elapsed = time.time() - self._last_call_time
            if elapsed < self.call_interval:
                time.sleep(self.call_interval - elapsed)
            self._last_call_time = time.time()

    def _request(self, symbol: str, params: Dict) -> Any:
        """发送 API 请求，带重试"""
        url = f"{self.base_url}/{quote(symbol, safe='')}"
        headers = {"User-Agent": USER_AGENT}

        for attempt in range(API_RETRY_TIMES):
            self._rate_limit()
            try:
                resp = requests.get(url, params=params, headers=headers, timeout=API_TIMEOUT)

                if resp.status_code == 200:
                    return resp.json()
                elif resp.status_code == 429:
                    wait_time = (attempt + 1) * 2
                    logger.warning(f"{symbol}: rate limited, waiting {wait_time}s...")
                    time.sleep(wait_time)
                else:
                    logger.warning(f"{symbol}: chart API error {resp.status_code}")
                    return None

            except requests.exceptions.Timeout:
                logger.warning(f"{symbol}: timeout on attempt {attempt + 1}/{API_RETRY_TIMES}")
            except ValueError as e:
                logger.warning(f"{symbol}: invalid JSON body: {e}")
                return None
            except requests.exceptions.RequestException as e:
                logger.warning(f"{symbol}: request error: {e}")
                return None

        logger.warning(f"{symbol}: failed after {API_RETRY_TIMES} attempts")
        return None

    def get_chart(self, symbol: str, start: DateLike, end: DateLike) -> Optional[ChartSeries]:
        """获取日线收盘价 [start, end]; None when unavailable."""
        params = {
            "interval": "1d",
            "period1": _epoch(start),
            "period2": _epoch(end),
        }
        payload = self._request(symbol, params)
        if payload is None:
            return None
        series = parse_chart_payload(symbol, payload)
        if series is None:
            logger.warning(f"{symbol}: empty or invalid chart series")
        return series


# 单例
yahoo_client = YahooChartClient()
