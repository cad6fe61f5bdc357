"""Configuration management for the paper trading simulator."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    # Ledger
    db_path: str = "papertrade.db"
    initial_cash: float = 100000.0

    # Market calendar override (JSON with "holidays" and "early_closes")
    market_calendar_path: Optional[str] = None

    # Position monitor cadence (seconds)
    monitor_open_interval: int = 30
    monitor_closed_interval: int = 300
    quote_timeout: float = 10.0

    # Cache TTLs (seconds)
    quote_cache_ttl: int = 15
    market_data_cache_ttl: int = 300  # 5 minutes
    analyst_cache_ttl: int = 3600  # 1 hour

    # Finnhub API (optional, analyst consensus)
    finnhub_api_key: Optional[str] = None

    # Telegram (optional, auto-exit push notifications)
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None

    # Broker fees and tax
    min_commission: float = 7.5
    commission_rate: float = 0.001
    tax_rate: float = 0.25
    max_position_value: float = 5000.0

    # Network settings
    http_timeout: int = 30
    max_concurrent_requests: int = 5
    max_retries: int = 3
    retry_backoff_factor: float = 0.5

    log_level: str = "INFO"

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        return cls(
            db_path=os.getenv("PAPERTRADE_DB_PATH", "papertrade.db"),
            initial_cash=float(os.getenv("INITIAL_CASH", "100000")),
            market_calendar_path=os.getenv("MARKET_CALENDAR_PATH", "").strip() or None,
            monitor_open_interval=int(os.getenv("MONITOR_OPEN_INTERVAL", "30")),
            monitor_closed_interval=int(os.getenv("MONITOR_CLOSED_INTERVAL", "300")),
            quote_timeout=float(os.getenv("QUOTE_TIMEOUT", "10")),
            quote_cache_ttl=int(os.getenv("QUOTE_CACHE_TTL", "15")),
            market_data_cache_ttl=int(os.getenv("MARKET_DATA_CACHE_TTL", "300")),
            analyst_cache_ttl=int(os.getenv("ANALYST_CACHE_TTL", "3600")),
            finnhub_api_key=os.getenv("FINNHUB_API_KEY", "").strip() or None,
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip() or None,
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", "").strip() or None,
            min_commission=float(os.getenv("MIN_COMMISSION", "7.5")),
            commission_rate=float(os.getenv("COMMISSION_RATE", "0.001")),
            tax_rate=float(os.getenv("TAX_RATE", "0.25")),
            max_position_value=float(os.getenv("MAX_POSITION_VALUE", "5000")),
            http_timeout=int(os.getenv("HTTP_TIMEOUT", "30")),
            max_concurrent_requests=int(os.getenv("MAX_CONCURRENT_REQUESTS", "5")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_backoff_factor=float(os.getenv("RETRY_BACKOFF_FACTOR", "0.5")),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
