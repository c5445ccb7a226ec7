import warnings
import os
from dotenv import load_dotenv
from starlette.config import Config
from typing import Optional
import logging

logger = logging.getLogger(__name__)

if os.path.exists(".env"):
    load_dotenv(".env")
    logger.info("Loaded environment variables from .env file")
else:
    warnings.warn("Config file '.env' not found. Using environment variables or defaults.")

config = Config(".env" if os.path.exists(".env") else None)

APP_NAME: str = config('APP_NAME', cast=str, default='Marketplace Repricer')
MONGO_IP: str = config('MONGO_IP', cast=str, default='localhost')
MONGO_PORT: int = config('MONGO_PORT', cast=int, default=27017)
MONGO_DB: str = config('MONGO_DB', cast=str, default='repricer')
MONGO_USERNAME: Optional[str] = config('MONGO_USERNAME', cast=str, default='')
MONGO_PASSWORD: Optional[str] = config('MONGO_PASSWORD', cast=str, default='')
# Full connection string; overrides the host/credential settings above when set
MONGO_URI: str = config('MONGO_URI', cast=str, default='')

# Monitoring scheduler
MONITOR_AUTOSTART: bool = config('MONITOR_AUTOSTART', cast=bool, default=True)
MONITOR_INTERVAL_MINUTES: int = config('MONITOR_INTERVAL_MINUTES', cast=int, default=20)
MONITOR_BATCH_SIZE: int = config('MONITOR_BATCH_SIZE', cast=int, default=3)
MONITOR_BATCH_DELAY_SECONDS: float = config('MONITOR_BATCH_DELAY_SECONDS', cast=float, default=2.0)
MONITOR_ITEM_DELAY_SECONDS: float = config('MONITOR_ITEM_DELAY_SECONDS', cast=float, default=0.5)
MAINTENANCE_HOUR_UTC: int = config('MAINTENANCE_HOUR_UTC', cast=int, default=3)

# Marketplace calls
MARKETPLACE_TIMEOUT_SECONDS: float = config('MARKETPLACE_TIMEOUT_SECONDS', cast=float, default=30.0)
MARKETPLACE_MAX_REQUESTS: int = config('MARKETPLACE_MAX_REQUESTS', cast=int, default=30)
MARKETPLACE_RATE_PERIOD_SECONDS: float = config('MARKETPLACE_RATE_PERIOD_SECONDS', cast=float, default=60.0)

# Listing document writes
CONCURRENCY_MAX_RETRIES: int = config('CONCURRENCY_MAX_RETRIES', cast=int, default=3)
CONCURRENCY_BACKOFF_SECONDS: float = config('CONCURRENCY_BACKOFF_SECONDS', cast=float, default=0.2)
ITEM_LOCK_WAIT_SECONDS: float = config('ITEM_LOCK_WAIT_SECONDS', cast=float, default=60.0)

# Price history retention
PRICE_HISTORY_KEEP_RECENT: int = config('PRICE_HISTORY_KEEP_RECENT', cast=int, default=1000)
PRICE_HISTORY_FAILED_RETENTION_DAYS: int = config('PRICE_HISTORY_FAILED_RETENTION_DAYS', cast=int, default=30)

# eBay settings
EBAY_CLIENT_ID: str = config('EBAY_CLIENT_ID', cast=str, default="")
EBAY_CLIENT_SECRET: str = config('EBAY_CLIENT_SECRET', cast=str, default="")
EBAY_OAUTH_SCOPES: str = config('EBAY_OAUTH_SCOPES', cast=str, default="https://api.ebay.com/oauth/api_scope/sell.inventory")
EBAY_API_BASE_URL: str = config('EBAY_API_BASE_URL', cast=str, default="https://api.ebay.com")
EBAY_CURRENCY: str = config('EBAY_CURRENCY', cast=str, default="USD")

if not EBAY_CLIENT_ID or not EBAY_CLIENT_SECRET:
    logger.warning("eBay client credentials are not set. Token refresh will not work!")
