"""
Fund Arena 配置 (Data Desk + Portfolio Desk)
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# Load .env (API keys, local path overrides)
load_dotenv(PROJECT_ROOT / ".env")

# Lane directories (one fund-* directory per lane, plus arena/)
FUNDS_DIR = Path(os.environ.get("FUNDS_DIR", str(PROJECT_ROOT / "funds")))
ARENA_DIR = FUNDS_DIR / "arena"
INDICES_FILE = ARENA_DIR / "indices.json"

# Per-run files written by the orchestration layer
FUND_CONFIG_FILE = "fund.config.json"
RUN_OUTPUT_FILE = "dexter_output.json"
RUN_META_FILE = "run_meta.json"

# ============ Market data (Yahoo chart endpoint) ============

YAHOO_CHART_URL = os.environ.get(
    "YAHOO_CHART_URL", "https://query1.finance.yahoo.com/v8/finance/chart"
)
USER_AGENT = "hedge-labs-fund-arena/1.0"

# API 调用配置
API_CALL_INTERVAL = float(os.environ.get("API_CALL_INTERVAL", "0"))  # seconds between calls
API_RETRY_TIMES = int(os.environ.get("API_RETRY_TIMES", "3"))
API_TIMEOUT = int(os.environ.get("API_TIMEOUT", "30"))

# Batch fetch pool size (one task per distinct ticker)
PRICE_FETCH_WORKERS = int(os.environ.get("PRICE_FETCH_WORKERS", "8"))

# Fetch window padding around the evaluated range (calendar days)
PRICE_LOOKBACK_PAD_DAYS = 14
PRICE_LOOKAHEAD_PAD_DAYS = 4

# ============ Constraint defaults (per-lane overrides in fund.config.json) ============

DEFAULT_POSITIONS = 12
DEFAULT_MIN_POSITION_PCT = 2.0
DEFAULT_MAX_POSITION_PCT = 12.0
DEFAULT_MAX_SECTOR_PCT = 25.0
DEFAULT_MAX_CRYPTO_PCT = 10.0

# Repair loop bounds
REPAIR_REDISTRIBUTE_ROUNDS = 80
REPAIR_OUTER_ROUNDS = 12
REPAIR_RECONCILE_ITERATIONS = 500

# Acceptance tolerance for validated weights (percentage points)
WEIGHT_TOLERANCE_PCT = 0.01

# Canonical fallback universe: equal-weight substitute when repair fails
FALLBACK_UNIVERSE = [
    ("MSFT", "Technology"),
    ("JNJ", "Healthcare"),
    ("XOM", "Energy"),
    ("JPM", "Financials"),
    ("COST", "Consumer Staples"),
    ("GE", "Industrials"),
    ("NEE", "Utilities"),
    ("AMT", "Real Estate"),
    ("LIN", "Materials"),
    ("GOOGL", "Communication Services"),
    ("AMZN", "Consumer Discretionary"),
    ("TSM", "Technology"),
    ("PG", "Consumer Staples"),
    ("UNH", "Healthcare"),
    ("V", "Financials"),
    ("AAPL", "Technology"),
]

# Spot crypto ETFs counted against the crypto cap
CRYPTO_ETFS = {
    "IBIT", "FBTC", "GBTC", "ARKB", "BITB", "HODL", "BTCO", "BRRR", "EZBC",
    "BTCW", "BITO", "ETHA", "ETHE", "FETH", "ETHW",
}

# Tickers that never count as a real holding
RESERVED_TICKERS = {"UNKNOWN", "CASH"}

# Benchmark used when a lane config does not name one
DEFAULT_BENCHMARK_TICKER = "SPY"
DEFAULT_BENCHMARK_NAME = "S&P 500 ETF"
