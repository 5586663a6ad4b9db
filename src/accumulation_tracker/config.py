"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Accumulation Tracker application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

# Well-known centralized exchange hot wallets (lowercase) and their operator.
KNOWN_EXCHANGE_WALLETS: dict[str, str] = {
    "0x28c6c06298d514db089934071355e5743bf21d60": "Binance",
    "0x21a31ee1afc51d94c2efccaa2092ad1028285549": "Binance",
    "0xdfd5293d8e347dfe59e90efd55b2956a1343963d": "Binance",
    "0x56eddb7aa87536c09ccc2793473599fd21a8b17f": "Binance",
    "0x3f5ce5fbfe3e9af3971dd833d26ba9b5c936f0be": "Binance",
    "0xd551234ae421e3bcba99a0da6d736074f22192ff": "Binance",
    "0x564286362092d8e7936f0549571a803b203aaced": "Binance",
    "0x0681d8db095565fe8a346fa0277bffde9c0edbbf": "Binance",
    "0xfe9e8709d3215310075d67e3ed32a380ccf451c8": "Binance",
    "0x4e9ce36e442e55ecd9025b9a6e0d88485d628a67": "Binance",
    "0xbe0eb53f46cd790cd13851d5eff43d12404d33e8": "Binance",
    "0xf977814e90da44bfa03b6295a0616a897441acec": "Binance",
    "0x001866ae5b3de6caa5a51543fd9fb64f524f5478": "Binance",
    "0x85b931a32a0725be14285b66f1a22178c672d69b": "Binance",
    "0x708396f17127c42383e3b9014072679b2f60b82f": "Binance",
    "0xe0f0cfde7ee664943906f17f7f14342e76a5cec7": "Binance",
    "0xa9d1e08c7793af67e9d92fe308d5697fb81d3e43": "Coinbase",
    "0x77696bb39917c91a0c3908d577d5e322095425ca": "Coinbase",
    "0x7c195d981abfdc3ddecd2ca0fed0958430488e34": "Coinbase",
    "0x95a9bd206ae52c4ba8eecfc93d18eacdd41c88cc": "Coinbase",
    "0xb739d0895772dbb71a89a3754a160269068f0d45": "Coinbase",
    "0x503828976d22510aad0201ac7ec88293211d23da": "Coinbase",
    "0xddfabcdc4d8ffc6d5beaf154f18b778f892a0740": "Coinbase",
    "0x71660c4005ba85c37ccec55d0c4493e66fe775d3": "Coinbase",
    "0x46340b20830761efd32832a74d7169b29feb9758": "Coinbase",
    "0xd688aea8f7d450909ade10c47faa95707ce0b252": "Coinbase",
    "0x6b76f8b1e9e59913bfe758821887311ba1805cab": "Kraken",
    "0xae2d4617c862309a3d75a0ffb358c7a5009c673f": "Kraken",
    "0x43984d578803891dfa9706bdeee6078d80cfc79e": "Kraken",
    "0x66c57bf505a85a74609d2c83e94aabb26d691e1f": "Kraken",
    "0xda9dfa130df4de4673b89022ee50ff26f6ea73cf": "Kraken",
    "0x0a869d79a7052c7f1b55a8ebabbea3420f0d1e13": "Kraken",
    "0xe853c56864a2ebe4576a807d26fdc4a0ada51919": "Kraken",
    "0x267be1c1d684f78cb4f6a176c4911b741e4ffdc0": "Kraken",
}


def _split_csv(v: object, *, name: str) -> tuple[str, ...]:
    if isinstance(v, str):
        return tuple(p.strip() for p in v.split(",") if p.strip())
    if isinstance(v, (list, tuple, set, frozenset)):
        return tuple(str(x) for x in v)
    raise TypeError(f"Invalid {name} type")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis settings for publishing signal updates."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (unset disables publishing)",
    )
    signal_channel: str = Field(
        default="accumulation:signals",
        alias="REDIS_SIGNAL_CHANNEL",
        description="Pub/sub channel receiving new and raised signals",
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


class DetectionSettings(BaseSettings):
    """Scoring thresholds and detection window settings."""

    model_config = SettingsConfigDict(env_prefix="DETECTION_", extra="ignore")

    signal_threshold: float = Field(
        default=60.0,
        alias="DETECTION_SIGNAL_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Minimum score for a signal to be persisted",
    )
    whale_threshold: float = Field(
        default=80.0,
        alias="DETECTION_WHALE_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Score at or above which a signal is WHALE_INFLOW",
    )
    concentrated_threshold: float = Field(
        default=70.0,
        alias="DETECTION_CONCENTRATED_THRESHOLD",
        ge=0.0,
        le=100.0,
        description="Score at or above which a signal is CONCENTRATED_BUYS",
    )
    alert_min_score: float = Field(
        default=75.0,
        alias="DETECTION_ALERT_MIN_SCORE",
        ge=0.0,
        le=100.0,
        description="Minimum signal score that fans out user alerts",
    )
    window_hours: Annotated[tuple[int, ...], NoDecode] = Field(
        default=(1, 6, 24),
        alias="DETECTION_WINDOW_HOURS",
        description="Trailing windows evaluated per token (comma-separated hours)",
    )
    top_positions: int = Field(
        default=100,
        alias="DETECTION_TOP_POSITIONS",
        ge=1,
        le=10_000,
        description="Number of top wallet positions loaded per token",
    )
    discovery_lookback_days: int = Field(
        default=7,
        alias="DETECTION_DISCOVERY_LOOKBACK_DAYS",
        ge=1,
        le=365,
        description="Transactions newer than this feed token discovery",
    )
    dex_events_enabled: bool = Field(
        default=True,
        alias="DETECTION_DEX_EVENTS_ENABLED",
        description="Feed DEX swap and LP change tables to the DEX rules",
    )
    window_tolerance_seconds: int = Field(
        default=60,
        alias="DETECTION_WINDOW_TOLERANCE_SECONDS",
        ge=0,
        le=3600,
        description="Signals whose bounds are this close are the same window",
    )
    exchange_addresses: Annotated[tuple[str, ...], NoDecode] = Field(
        default=tuple(KNOWN_EXCHANGE_WALLETS),
        alias="DETECTION_EXCHANGE_ADDRESSES",
        description="Exchange wallets excluded as buyers (comma-separated)",
    )

    @field_validator("window_hours", mode="before")
    @classmethod
    def _parse_window_hours(cls, v: object) -> tuple[int, ...]:
        hours = tuple(int(x) for x in _split_csv(v, name="DETECTION_WINDOW_HOURS"))
        if not hours or any(h <= 0 for h in hours):
            raise ValueError("DETECTION_WINDOW_HOURS must list positive hours")
        return hours

    @field_validator("exchange_addresses", mode="before")
    @classmethod
    def _parse_exchange_addresses(cls, v: object) -> tuple[str, ...]:
        return tuple(a.lower() for a in _split_csv(v, name="DETECTION_EXCHANGE_ADDRESSES"))

    @model_validator(mode="after")
    def _check_threshold_order(self) -> DetectionSettings:
        if not self.signal_threshold <= self.concentrated_threshold <= self.whale_threshold:
            raise ValueError(
                "Thresholds must satisfy SIGNAL <= CONCENTRATED <= WHALE"
            )
        return self


class AlertSettings(BaseSettings):
    """Alert fan-out and retry settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore")

    dedup_window_minutes: int = Field(
        default=5,
        alias="ALERT_DEDUP_WINDOW_MINUTES",
        ge=0,
        le=1440,
        description="Skip a new alert when an equivalent PENDING one is this recent",
    )
    pending_batch_size: int = Field(
        default=100,
        alias="ALERT_PENDING_BATCH_SIZE",
        ge=1,
        le=10_000,
        description="Maximum PENDING alerts retried per sweep",
    )
    pending_retry_delay_seconds: int = Field(
        default=120,
        alias="ALERT_PENDING_RETRY_DELAY_SECONDS",
        ge=0,
        le=86_400,
        description="Only PENDING alerts older than this are retried",
    )
    recipient_mode: Literal["paid_subscribers", "token_subscribers"] = Field(
        default="paid_subscribers",
        alias="ALERT_RECIPIENT_MODE",
        description="Recipients of accumulation signal alerts",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        alias="FRONTEND_URL",
        description="Base URL used for links inside notifications",
    )

    @field_validator("frontend_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None


class EmailSettings(BaseSettings):
    """Email provider settings (SendGrid preferred, Mailgun fallback)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    sendgrid_api_key: SecretStr | None = Field(
        default=None,
        alias="SENDGRID_API_KEY",
        description="SendGrid API key",
    )
    mailgun_api_key: SecretStr | None = Field(
        default=None,
        alias="MAILGUN_API_KEY",
        description="Mailgun API key",
    )
    mailgun_domain: str | None = Field(
        default=None,
        alias="MAILGUN_DOMAIN",
        description="Mailgun sending domain",
    )
    from_address: str = Field(
        default="noreply@accumulation-tracker.local",
        alias="EMAIL_FROM",
        description="Sender address",
    )
    from_name: str = Field(
        default="Accumulation Tracker",
        alias="EMAIL_FROM_NAME",
        description="Sender display name",
    )

    @property
    def provider(self) -> Literal["sendgrid", "mailgun"] | None:
        if self.sendgrid_api_key is not None:
            return "sendgrid"
        if self.mailgun_api_key is not None and self.mailgun_domain:
            return "mailgun"
        return None

    @property
    def enabled(self) -> bool:
        """Check if an email provider is configured."""
        return self.provider is not None


class BitquerySettings(BaseSettings):
    """Bitquery GraphQL API used as the large transfer source."""

    model_config = SettingsConfigDict(env_prefix="BITQUERY_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="BITQUERY_API_KEY",
        description="Bitquery API key; broad monitoring is disabled without it",
    )
    url: str = Field(
        default="https://graphql.bitquery.io",
        alias="BITQUERY_URL",
        description="Bitquery GraphQL endpoint",
    )
    lookback_minutes: int = Field(
        default=60,
        alias="BITQUERY_LOOKBACK_MINUTES",
        ge=1,
        le=10_080,
        description="How far back each large transfer query reaches",
    )

    @property
    def enabled(self) -> bool:
        """Check if the Bitquery source is configured."""
        return self.api_key is not None and bool(self.api_key.get_secret_value())


class SchedulerSettings(BaseSettings):
    """Cadences of the recurring background jobs."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    detect_interval_seconds: int = Field(
        default=600,
        alias="SCHEDULER_DETECT_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Detection cadence",
    )
    discover_interval_seconds: int = Field(
        default=900,
        alias="SCHEDULER_DISCOVER_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Token discovery cadence",
    )
    alert_sweep_interval_seconds: int = Field(
        default=120,
        alias="SCHEDULER_ALERT_SWEEP_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="PENDING alert retry sweep cadence",
    )
    broad_monitor_interval_seconds: int = Field(
        default=1800,
        alias="SCHEDULER_BROAD_MONITOR_INTERVAL_SECONDS",
        ge=1,
        le=86_400,
        description="Cross-token large transfer monitoring cadence",
    )
    broad_monitor_min_usd: float = Field(
        default=100_000.0,
        alias="SCHEDULER_BROAD_MONITOR_MIN_USD",
        ge=0.0,
        description="Minimum USD value of a transfer picked up by broad monitoring",
    )
    broad_monitor_limit: int = Field(
        default=100,
        alias="SCHEDULER_BROAD_MONITOR_LIMIT",
        ge=1,
        le=10_000,
        description="Maximum transfers fetched per network",
    )
    broad_monitor_networks: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("ethereum", "bsc", "matic"),
        alias="SCHEDULER_BROAD_MONITOR_NETWORKS",
        description="Networks scanned by broad monitoring (comma-separated)",
    )

    @field_validator("broad_monitor_networks", mode="before")
    @classmethod
    def _parse_networks(cls, v: object) -> tuple[str, ...]:
        return _split_csv(v, name="SCHEDULER_BROAD_MONITOR_NETWORKS")


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from accumulation_tracker.config import get_settings

        settings = get_settings()
        print(settings.detection.signal_threshold)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
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
    detection: DetectionSettings = Field(
        default_factory=lambda: DetectionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alerts: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
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
    email: EmailSettings = Field(
        default_factory=lambda: EmailSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    bitquery: BitquerySettings = Field(
        default_factory=lambda: BitquerySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
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
        description="Format alerts without sending them or updating their status",
    )

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
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "detection": {
                "signal_threshold": str(self.detection.signal_threshold),
                "whale_threshold": str(self.detection.whale_threshold),
                "concentrated_threshold": str(self.detection.concentrated_threshold),
                "alert_min_score": str(self.detection.alert_min_score),
                "window_hours": ",".join(str(h) for h in self.detection.window_hours),
                "exchange_addresses": str(len(self.detection.exchange_addresses)),
            },
            "alerts": {
                "dedup_window_minutes": str(self.alerts.dedup_window_minutes),
                "pending_batch_size": str(self.alerts.pending_batch_size),
                "recipient_mode": self.alerts.recipient_mode,
            },
            "telegram_enabled": str(self.telegram.enabled),
            "email_provider": self.email.provider or "(not set)",
            "bitquery_enabled": str(self.bitquery.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

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
