"""Configuration management for the Polymarket copy-trading service."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directory
DATA_DIR = PROJECT_ROOT / "data"
LOGS_DIR = PROJECT_ROOT / "logs"

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

# Database configuration
DB_PATH = os.getenv("DB_PATH", "data/copytrade.db")
DB_FULL_PATH = PROJECT_ROOT / DB_PATH
DB_FULL_PATH.parent.mkdir(parents=True, exist_ok=True)

# Polymarket credentials (auto mode only)
POLYMARKET_PRIVATE_KEY = os.getenv("POLYMARKET_PRIVATE_KEY", "")
POLYMARKET_FUNDER = os.getenv("POLYMARKET_FUNDER", "")

# Test mode tightens the default risk limits for new subscribers
TEST_MODE = os.getenv("TEST_MODE", "false").lower() in ("1", "true", "yes")

# =============================================================================
# DEFAULT RISK SETTINGS
# =============================================================================

SAFE_DEFAULTS = {
    "copy_percentage": 10,
    "max_trade_size": 10,
    "daily_limit": 100,
    "max_per_market": 25,
}

TEST_MODE_LIMITS = {
    "copy_percentage": 5,
    "max_trade_size": 10,
    "daily_limit": 50,
    "max_per_market": 15,
}

# Starting cash for new paper portfolios (USD)
PAPER_STARTING_BALANCE = float(os.getenv("PAPER_STARTING_BALANCE", "1000"))

# =============================================================================
# REPLICATION ENGINE
# =============================================================================

# Exchange minimum order value (USD)
MIN_ORDER_SIZE = float(os.getenv("MIN_ORDER_SIZE", "1"))

# Live price must stay within these multiples of the source price
SLIPPAGE_BUY_TOLERANCE = float(os.getenv("SLIPPAGE_BUY_TOLERANCE", "1.02"))
SLIPPAGE_SELL_TOLERANCE = float(os.getenv("SLIPPAGE_SELL_TOLERANCE", "0.98"))

# Pending replicas younger than this count toward the per-market cap
PENDING_WINDOW_SECONDS = int(os.getenv("PENDING_WINDOW_SECONDS", "300"))

# Positions below this share count are treated as closed
POSITION_EPSILON = float(os.getenv("POSITION_EPSILON", "0.0001"))

# Recent trade hashes kept in memory (trimmed back once it doubles)
DEDUP_CACHE_CAPACITY = int(os.getenv("DEDUP_CACHE_CAPACITY", "5000"))

# Mark prices older than this are ignored for valuation
PRICE_MAX_AGE_SECONDS = int(os.getenv("PRICE_MAX_AGE_SECONDS", "300"))

# Background task intervals
RECONCILE_INTERVAL_SECONDS = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "300"))
SNAPSHOT_INTERVAL_SECONDS = int(os.getenv("SNAPSHOT_INTERVAL_SECONDS", "3600"))

# External call timeouts (seconds) and retry policy for read-only lookups
API_TIMEOUT = float(os.getenv("API_TIMEOUT", "5"))
EXECUTION_TIMEOUT = float(os.getenv("EXECUTION_TIMEOUT", "15"))
MAX_RETRY_ATTEMPTS = int(os.getenv("MAX_RETRY_ATTEMPTS", "3"))

# =============================================================================
# API ENDPOINTS
# =============================================================================

CLOB_BASE_URL = "https://clob.polymarket.com"
GAMMA_API_URL = "https://gamma-api.polymarket.com"

# Chain configuration (Polygon)
CHAIN_ID = 137
