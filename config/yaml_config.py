"""
Trading Simulator - YAML Configuration Loader
Loads declarative YAML config and injects values from environment variables
"""

import yaml
import os
import re
import logging
from typing import List, Any, Optional
from pydantic import BaseModel, Field, validator
from pathlib import Path

logger = logging.getLogger(__name__)


# ============================================
# PYDANTIC MODELS FOR YAML STRUCTURE
# ============================================

class PriceFeedConfig(BaseModel):
    """Live price stream configuration"""
    enabled: bool = Field(True, description="Connect to the live trade stream on startup")
    url: str = Field(
        "wss://stream.binance.com:9443/ws/btcusdt@trade",
        description="Websocket URL of the trade stream"
    )
    reconnect_initial_delay: float = Field(1.0, gt=0, description="First reconnect delay (seconds)")
    reconnect_max_delay: float = Field(60.0, gt=0, description="Reconnect delay cap (seconds)")


class MarketConfig(BaseModel):
    """Traded market configuration"""
    symbol: str = Field("BTCUSDT", description="Traded symbol (BTC/USDT style accepted)")
    price_feed: PriceFeedConfig = PriceFeedConfig()

    @validator('symbol')
    def validate_symbol(cls, v):
        symbol = v.strip().upper().replace("/", "").replace("-", "")
        if not symbol:
            raise ValueError("market.symbol must not be empty")
        return symbol


class TradingConfig(BaseModel):
    """Trade lifecycle configuration"""
    open_policy: str = Field(
        "reject",
        description="Opening over an open position: reject (conflict error) or overwrite"
    )
    lock_timeout_seconds: float = Field(5.0, gt=0, description="Max wait for an account lock")

    @validator('open_policy')
    def validate_open_policy(cls, v):
        value = v.lower()
        if value not in ['reject', 'overwrite']:
            raise ValueError(f"open_policy must be 'reject' or 'overwrite', got: {v}")
        return value


class StorageConfig(BaseModel):
    """Account store configuration"""
    backend: str = Field("json", description="memory, json or firestore")
    accounts_dir: str = Field("accounts", description="Directory of account files (json backend)")
    firestore_collection: str = Field("sim_accounts", description="Collection name (firestore backend)")

    @validator('backend')
    def validate_backend(cls, v):
        value = v.lower()
        valid = ['memory', 'json', 'firestore']
        if value not in valid:
            raise ValueError(f"Storage backend must be one of {valid}, got: {v}")
        return value


class ExitMonitorConfig(BaseModel):
    """Stop-loss / take-profit monitor configuration"""
    enabled: bool = True
    exit_retry_attempts: int = Field(3, ge=1, description="Attempts per triggered exit on storage errors")
    exit_retry_initial_delay: float = Field(0.5, gt=0, description="First retry delay (seconds)")
    exit_retry_max_delay: float = Field(5.0, gt=0, description="Retry delay cap (seconds)")


class ApiConfig(BaseModel):
    """HTTP API configuration"""
    cors_allowed_origins: List[str] = ["*"]
    default_history_page_size: int = Field(10, ge=1, description="Trades per history page")


class MonitoringConfig(BaseModel):
    """Logging configuration"""
    log_level: str = "INFO"

    @validator('log_level')
    def validate_log_level(cls, v):
        value = v.upper()
        if value not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"Invalid log_level: {v}")
        return value


class AppConfig(BaseModel):
    """Complete application configuration"""
    version: str
    market: MarketConfig = MarketConfig()
    trading: TradingConfig = TradingConfig()
    storage: StorageConfig = StorageConfig()
    exit_monitor: ExitMonitorConfig = ExitMonitorConfig()
    api: ApiConfig = ApiConfig()
    monitoring: MonitoringConfig = MonitoringConfig()


# ============================================
# YAML LOADER WITH ENV INJECTION
# ============================================

def inject_env_vars(obj: Any) -> Any:
    """
    Recursively inject environment variables into config

    Replaces ${ENV_VAR} with os.getenv('ENV_VAR') and ${ENV_VAR:-default}
    with the default when the variable is unset
    """
    if isinstance(obj, dict):
        return {k: inject_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [inject_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        pattern = r'\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}'

        def replace_var(match):
            env_var, default = match.group(1), match.group(2)
            value = os.getenv(env_var)
            if value is None:
                if default is not None:
                    return default
                logger.warning(f"Environment variable {env_var} not set!")
                return ""
            return value

        return re.sub(pattern, replace_var, obj)
    return obj


def load_yaml_config(config_path: str = "config.yaml") -> AppConfig:
    """
    Load YAML configuration and inject environment values

    Args:
        config_path: Path to config.yaml file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config.yaml not found
        ValueError: If validation fails
    """
    config_file = Path(config_path)

    if not config_file.exists():
        # Try relative to the repo root
        config_file = Path(__file__).parent.parent / config_path

    if not config_file.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            f"Looked in: {config_file}"
        )

    logger.info(f"Loading configuration from {config_file}")

    try:
        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax: {str(e)}")

    config_with_env = inject_env_vars(raw_config)

    try:
        config = AppConfig(**config_with_env)
    except Exception as e:
        raise ValueError(f"Configuration validation failed: {str(e)}")

    logger.info("✅ Configuration loaded successfully!")
    logger.info(f"   Symbol: {config.market.symbol}")
    logger.info(f"   Storage: {config.storage.backend}")
    logger.info(f"   Open policy: {config.trading.open_policy}")
    logger.info(f"   Price feed: {'enabled' if config.market.price_feed.enabled else 'disabled'}")

    return config


_config: Optional[AppConfig] = None


def get_config(config_path: Optional[str] = None) -> AppConfig:
    """Load the configuration once; ``SIM_CONFIG_PATH`` overrides the default file."""
    global _config
    if _config is None:
        _config = load_yaml_config(config_path or os.getenv("SIM_CONFIG_PATH", "config.yaml"))
    return _config
