"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
DEX buy tracker, loading and validating environment variables at startup.
Per-group alert configuration is not part of these settings; it lives in the
groups file (see ``dex_buy_tracker.groups``).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class ChainSettings(BaseModel):
    """Endpoint and display configuration for a single chain."""

    rpc_url: str = Field(description="JSON-RPC endpoint (ws/wss streams, http/https polls)")
    explorer_url: str = Field(description="Block explorer base URL")
    native_symbol: str = Field(default="ETH", description="Native asset symbol shown in alerts")
    native_emoji: str = Field(default="🔹", description="Glyph shown next to the native amount")
    price_ticker: str = Field(default="ETHUSDT", description="Ticker used for the native USD price")
    fallback_price_usd: Decimal = Field(
        default=Decimal("3400"),
        description="Native USD price used when the price feed is unreachable",
    )
    dextools_slug: str = Field(default="ether", description="Chain slug used in DexTools links")
    poll_interval_seconds: float = Field(
        default=3.0,
        gt=0,
        description="Log polling interval for HTTP endpoints",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://", "ws://", "wss://")):
            raise ValueError("RPC URL must be an HTTP(S) or WS(S) endpoint")
        return v

    @field_validator("explorer_url")
    @classmethod
    def validate_explorer_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Explorer URL must be an HTTP(S) URL")
        return v.rstrip("/")

    @property
    def is_streaming(self) -> bool:
        """Whether the endpoint advertises a streaming (WebSocket) transport."""
        return self.rpc_url.startswith(("ws://", "wss://"))


def _default_chains() -> dict[str, ChainSettings]:
    return {
        "bsc": ChainSettings(
            rpc_url="https://bsc-dataseed.binance.org",
            explorer_url="https://bscscan.com",
            native_symbol="BNB",
            native_emoji="🟡",
            price_ticker="BNBUSDT",
            fallback_price_usd=Decimal("875"),
            dextools_slug="bsc",
        ),
        "ethereum": ChainSettings(
            rpc_url="https://ethereum-rpc.publicnode.com",
            explorer_url="https://etherscan.io",
            native_symbol="ETH",
            native_emoji="🔹",
            price_ticker="ETHUSDT",
            fallback_price_usd=Decimal("3400"),
            dextools_slug="ether",
            poll_interval_seconds=12.0,
        ),
        "base": ChainSettings(
            rpc_url="https://mainnet.base.org",
            explorer_url="https://basescan.org",
            native_symbol="ETH",
            native_emoji="🟦",
            price_ticker="ETHUSDT",
            fallback_price_usd=Decimal("3400"),
            dextools_slug="base",
            poll_interval_seconds=2.0,
        ),
    }


class TrackerSettings(BaseSettings):
    """Subscription maintenance and event processing settings."""

    model_config = SettingsConfigDict(env_prefix="TRACKER_", extra="ignore", populate_by_name=True)

    resync_interval_seconds: float = Field(
        default=15.0,
        alias="TRACKER_RESYNC_INTERVAL_SECONDS",
        gt=0,
        le=3600,
        description="Interval between pool discovery / subscription resync ticks",
    )
    pool_refresh_interval_seconds: float = Field(
        default=600.0,
        alias="TRACKER_POOL_REFRESH_INTERVAL_SECONDS",
        ge=0,
        description="Re-run pool discovery for a group after this many seconds (0 disables)",
    )
    discover_all_pools: bool = Field(
        default=True,
        alias="TRACKER_DISCOVER_ALL_POOLS",
        description="Expand a group's pool set beyond the main pair via market data",
    )
    min_pool_liquidity_usd: Decimal = Field(
        default=Decimal("1000"),
        alias="TRACKER_MIN_POOL_LIQUIDITY_USD",
        ge=0,
        description="Pools at or below this USD liquidity are not subscribed",
    )
    request_timeout_seconds: float = Field(
        default=8.0,
        alias="TRACKER_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=60,
        description="Upper bound for any single RPC or HTTP call",
    )
    resolve_retry_delay_seconds: float = Field(
        default=1.0,
        alias="TRACKER_RESOLVE_RETRY_DELAY_SECONDS",
        ge=0,
        description="Delay before the single retry of token0/token1 resolution",
    )
    max_poll_block_range: int = Field(
        default=100,
        alias="TRACKER_MAX_POLL_BLOCK_RANGE",
        ge=1,
        le=10_000,
        description="Maximum block span per eth_getLogs poll",
    )
    max_poll_failures: int = Field(
        default=3,
        alias="TRACKER_MAX_POLL_FAILURES",
        ge=1,
        description="Consecutive poll failures before a polling connection is dropped",
    )
    dedup_ttl_seconds: int = Field(
        default=3600,
        alias="TRACKER_DEDUP_TTL_SECONDS",
        ge=60,
        description="How long a processed swap is remembered for de-duplication",
    )
    dedup_max_entries: int = Field(
        default=10_000,
        alias="TRACKER_DEDUP_MAX_ENTRIES",
        ge=100,
        description="In-memory de-duplication capacity",
    )


class MarketDataSettings(BaseSettings):
    """Market data and native price provider settings."""

    model_config = SettingsConfigDict(env_prefix="MARKET_DATA_", extra="ignore", populate_by_name=True)

    dexscreener_url: str = Field(
        default="https://api.dexscreener.com/latest/dex",
        alias="MARKET_DATA_DEXSCREENER_URL",
        description="DexScreener API base URL",
    )
    price_api_url: str = Field(
        default="https://api.binance.com/api/v3",
        alias="MARKET_DATA_PRICE_API_URL",
        description="Binance-compatible ticker API base URL",
    )
    cache_ttl_seconds: int = Field(
        default=30,
        alias="MARKET_DATA_CACHE_TTL_SECONDS",
        ge=0,
        le=3600,
        description="Redis TTL for pair info and native prices",
    )
    max_retries: int = Field(
        default=2,
        alias="MARKET_DATA_MAX_RETRIES",
        ge=0,
        le=10,
        description="Retry attempts for transient HTTP failures",
    )

    @field_validator("dexscreener_url", "price_api_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Market data URLs must be HTTP(S) endpoints")
        return v.rstrip("/")


class AlertSettings(BaseSettings):
    """Alert rendering settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore", populate_by_name=True)

    strong_buy_usd: Decimal = Field(
        default=Decimal("1000"),
        alias="ALERT_STRONG_BUY_USD",
        ge=0,
        description="Headline escalates to 'Strong Buy' at this USD value",
    )
    big_buy_usd: Decimal = Field(
        default=Decimal("3000"),
        alias="ALERT_BIG_BUY_USD",
        ge=0,
        description="Headline escalates to 'Big Buy' at this USD value",
    )
    whale_usd: Decimal = Field(
        default=Decimal("5000"),
        alias="ALERT_WHALE_USD",
        ge=0,
        description="Headline escalates to 'Whale' at this USD value",
    )
    max_emoji: int = Field(
        default=50,
        alias="ALERT_MAX_EMOJI",
        ge=1,
        le=200,
        description="Cap on the magnitude bar length",
    )
    whale_loading_pct: int = Field(
        default=500,
        alias="ALERT_WHALE_LOADING_PCT",
        ge=0,
        description="Position increase above which the 'whale loading' line is shown",
    )
    contact_url: str | None = Field(
        default=None,
        alias="ALERT_CONTACT_URL",
        description="Optional URL for the 'DM for Access' button",
    )

    @field_validator("whale_usd")
    @classmethod
    def validate_tier_order(cls, v: Decimal, info: ValidationInfo) -> Decimal:
        data = info.data
        big = data.get("big_buy_usd")
        strong = data.get("strong_buy_usd")
        if big is not None and v < big:
            raise ValueError("ALERT_WHALE_USD must be >= ALERT_BIG_BUY_USD")
        if big is not None and strong is not None and big < strong:
            raise ValueError("ALERT_BIG_BUY_USD must be >= ALERT_STRONG_BUY_USD")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; caching is disabled when unset",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        return self.url is not None


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore", populate_by_name=True)

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram delivery is configured."""
        return self.bot_token is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from dex_buy_tracker.config import get_settings

        settings = get_settings()
        print(settings.chains["bsc"].rpc_url)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        populate_by_name=True,
    )

    chains: dict[str, ChainSettings] = Field(
        default_factory=_default_chains,
        alias="CHAINS",
        description="Chain id -> endpoint configuration (JSON)",
    )
    groups_file: Path = Field(
        default=Path("groups.json"),
        alias="GROUPS_FILE",
        description="JSON file with per-group alert configuration",
    )

    tracker: TrackerSettings = Field(
        default_factory=lambda: TrackerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    market_data: MarketDataSettings = Field(
        default_factory=lambda: MarketDataSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alert: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    @field_validator("chains")
    @classmethod
    def normalize_chain_ids(cls, v: dict[str, ChainSettings]) -> dict[str, ChainSettings]:
        if not v:
            raise ValueError("CHAINS must configure at least one chain")
        return {k.lower(): c for k, c in v.items()}

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "chains": {
                chain: self._redact_url(cfg.rpc_url) for chain, cfg in sorted(self.chains.items())
            },
            "groups_file": str(self.groups_file),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "tracker": {
                "resync_interval_seconds": str(self.tracker.resync_interval_seconds),
                "pool_refresh_interval_seconds": str(self.tracker.pool_refresh_interval_seconds),
                "min_pool_liquidity_usd": str(self.tracker.min_pool_liquidity_usd),
                "request_timeout_seconds": str(self.tracker.request_timeout_seconds),
            },
            "market_data": {
                "dexscreener_url": self.market_data.dexscreener_url,
                "price_api_url": self.market_data.price_api_url,
            },
            "alert": {
                "strong_buy_usd": str(self.alert.strong_buy_usd),
                "big_buy_usd": str(self.alert.big_buy_usd),
                "whale_usd": str(self.alert.whale_usd),
            },
            "telegram_bot_token": "(set)" if self.telegram.bot_token else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "preview"]) -> None:
        """Validate command-specific requirements.

        A live run must be able to deliver alerts unless it is a dry run.
        """
        if command == "run" and not self.dry_run and not self.telegram.enabled:
            raise ValueError("TELEGRAM_BOT_TOKEN is required unless DRY_RUN is enabled")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password or API key segments from a URL."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        # Hosted RPC providers put the key in the last path segment.
        if "://" in url and url.count("/") >= 3:
            head, _, tail = url.rpartition("/")
            if len(tail) >= 24:
                return f"{head}/***"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
