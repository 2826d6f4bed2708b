"""
Trading Simulator - Settings

Loads configuration from config.yaml (path overridable with SIM_CONFIG_PATH)
after reading .env, and exposes it as module-level constants.
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables before the YAML is interpolated
load_dotenv()

logger = logging.getLogger(__name__)

from config.yaml_config import get_config, AppConfig

try:
    CONFIG: AppConfig = get_config()
except Exception as e:
    logger.error(f"❌ Failed to load config.yaml: {str(e)}")
    raise


# ============================================
# GLOBAL SETTINGS (From config.yaml)
# ============================================

# Market
SYMBOL = CONFIG.market.symbol
PRICE_FEED_ENABLED = CONFIG.market.price_feed.enabled
PRICE_FEED_URL = CONFIG.market.price_feed.url
PRICE_FEED_RECONNECT_INITIAL_DELAY = CONFIG.market.price_feed.reconnect_initial_delay
PRICE_FEED_RECONNECT_MAX_DELAY = CONFIG.market.price_feed.reconnect_max_delay

# Trade lifecycle
OPEN_POLICY = CONFIG.trading.open_policy
LOCK_TIMEOUT_SECONDS = CONFIG.trading.lock_timeout_seconds

# Storage
STORAGE_BACKEND = CONFIG.storage.backend
ACCOUNTS_DIR = CONFIG.storage.accounts_dir
FIRESTORE_COLLECTION = CONFIG.storage.firestore_collection

# Exit monitor
EXIT_MONITOR_ENABLED = CONFIG.exit_monitor.enabled
EXIT_RETRY_ATTEMPTS = CONFIG.exit_monitor.exit_retry_attempts
EXIT_RETRY_INITIAL_DELAY = CONFIG.exit_monitor.exit_retry_initial_delay
EXIT_RETRY_MAX_DELAY = CONFIG.exit_monitor.exit_retry_max_delay

# API
CORS_ALLOWED_ORIGINS = CONFIG.api.cors_allowed_origins
DEFAULT_HISTORY_PAGE_SIZE = CONFIG.api.default_history_page_size

# Monitoring
LOG_LEVEL = CONFIG.monitoring.log_level

# Server (Cloud Run style PORT env var)
PORT = int(os.getenv("PORT", "3000"))
