"""
Centralized configuration for the Sales Doctor analytics engine.

Configuration is loaded from environment variables with sensible defaults.

Usage:
    from salesdoctor.config import config

    server = config.api.server_url
    ttl = config.cache.ttl_seconds
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Parse a comma-separated environment variable into a tuple of ids."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class APIConfig:
    """Sales Doctor JSON-RPC API configuration."""

    server_url: str = field(default_factory=lambda: os.getenv("SD_SERVER_URL", ""))
    login: str = field(default_factory=lambda: os.getenv("SD_LOGIN", ""))
    password: str = field(default_factory=lambda: os.getenv("SD_PASSWORD", ""))
    user_id: str = field(default_factory=lambda: os.getenv("SD_USER_ID", ""))
    token: str = field(default_factory=lambda: os.getenv("SD_TOKEN", ""))
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("SD_REQUEST_TIMEOUT", "5"))
    )

    # Page sizes and safety ceilings per list endpoint
    order_page_size: int = 1000
    order_max_pages: int = 20
    purchase_page_size: int = 500
    purchase_max_pages: int = 10
    payment_page_size: int = 1000
    payment_max_pages: int = 10
    balance_page_size: int = 1000
    balance_max_pages: int = 10
    client_page_size: int = 500
    client_max_pages: int = 20
    product_page_size: int = 500
    product_max_pages: int = 20
    agent_limit: int = 100
    stock_limit: int = 500


@dataclass(frozen=True)
class CacheConfig:
    """Snapshot cache and caching-service configuration."""

    ttl_seconds: int = field(default_factory=lambda: int(os.getenv("SD_CACHE_TTL", "300")))
    refresh_interval_seconds: int = 600  # 10 minutes
    service_url: str = field(default_factory=lambda: os.getenv("SD_CACHE_SERVICE_URL", ""))
    service_timeout: float = 5.0


@dataclass(frozen=True)
class CurrencyConfig:
    """Currency ids, thresholds and exchange rate bounds."""

    default_rate: float = field(default_factory=lambda: float(os.getenv("SD_USD_RATE", "12200")))
    min_rate: float = 1000.0
    max_rate: float = 50000.0

    # Magnitude heuristics; must stay exactly as is for report parity
    order_usd_threshold: float = 10000.0  # order total < this -> USD
    line_usd_threshold: float = 100.0     # line summa <= this -> USD
    purchase_usd_threshold: float = 100.0  # purchase price < this -> USD

    usd_payment_types: FrozenSet[str] = frozenset({"d0_4"})
    usd_price_types: FrozenSet[str] = frozenset({"d0_6", "d0_7", "d0_8", "d0_9", "d0_11"})


@dataclass(frozen=True)
class CohortConfig:
    """Named agent cohorts (external allow-lists, not derivable from data)."""

    iroda_agent_ids: Tuple[str, ...] = field(default_factory=lambda: _env_list(
        "SD_IRODA_AGENT_IDS",
        (
            "d0_2", "d0_6", "d0_7", "d0_8", "d0_10", "d0_11",
            "d0_19", "d0_20", "d0_22", "d0_24", "d0_25", "d0_28",
        ),
    ))


@dataclass(frozen=True)
class DebtConfig:
    """Debt and overdue configuration."""

    # Placeholder due dates emitted by the upstream for "no due date"
    sentinel_date_prefixes: Tuple[str, ...] = ("1969", "1970")
    unknown_agent_id: str = "unknown"


@dataclass(frozen=True)
class InventoryConfig:
    """Inventory report configuration."""

    low_stock_threshold: float = 100.0


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""

    version: str = "1.0.0"
    timezone: str = field(default_factory=lambda: os.getenv("SD_TIMEZONE", "Asia/Tashkent"))
    api: APIConfig = field(default_factory=APIConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    currency: CurrencyConfig = field(default_factory=CurrencyConfig)
    cohorts: CohortConfig = field(default_factory=CohortConfig)
    debt: DebtConfig = field(default_factory=DebtConfig)
    inventory: InventoryConfig = field(default_factory=InventoryConfig)


# Global config instance
config = AppConfig()


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


def validate_config(app_config: Optional[AppConfig] = None, require_api: bool = True) -> None:
    """
    Validate that all required configuration is present.

    Call this on application startup to fail fast with clear error messages.

    Args:
        app_config: Config to validate (defaults to the global instance)
        require_api: If True, require server URL and either credentials or a token

    Raises:
        ConfigurationError: If required configuration is missing
    """
    cfg = app_config or config
    errors: List[str] = []

    if require_api:
        if not cfg.api.server_url:
            errors.append("SD_SERVER_URL is required but not set")
        has_login = bool(cfg.api.login and cfg.api.password)
        has_token = bool(cfg.api.user_id and cfg.api.token)
        if not (has_login or has_token):
            errors.append("Either SD_LOGIN/SD_PASSWORD or SD_USER_ID/SD_TOKEN must be set")

    if not cfg.currency.min_rate <= cfg.currency.default_rate <= cfg.currency.max_rate:
        errors.append(
            f"SD_USD_RATE must be between {cfg.currency.min_rate:.0f} and {cfg.currency.max_rate:.0f}"
        )

    if cfg.api.request_timeout <= 0:
        errors.append("SD_REQUEST_TIMEOUT must be positive")

    if cfg.cache.ttl_seconds <= 0:
        errors.append("SD_CACHE_TTL must be positive")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)
