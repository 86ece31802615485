from __future__ import annotations

from dataclasses import dataclass, field
import os

from shopincome.core.errors import ConfigurationMissingError

DEFAULT_DATABASE_URL = "sqlite:///shopincome.db"
DEFAULT_API_VERSION = "2025-04"


@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Pagination and window settings for a sync run."""

    page_size: int = 100
    overlap_days: int = 2
    initial_backfill_days: int = 30


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Process configuration loaded at startup.

    Shop values are optional here because only some commands need them; use
    the ``require_*`` accessors where a value is mandatory.
    """

    database_url: str = DEFAULT_DATABASE_URL
    shop_domain: str | None = None
    access_token: str | None = None
    api_version: str = DEFAULT_API_VERSION
    timezone: str | None = None
    currency_code: str | None = None
    http_timeout_seconds: float = 30.0
    log_level: str = "INFO"
    sync: SyncSettings = field(default_factory=SyncSettings)

    def require_shop_domain(self) -> str:
        return _require_value("SHOPIFY_SHOP_DOMAIN", self.shop_domain)

    def require_access_token(self) -> str:
        return _require_value("SHOPIFY_ADMIN_ACCESS_TOKEN", self.access_token)

    def require_timezone(self) -> str:
        return _require_value("SHOP_TIMEZONE_IANA", self.timezone)

    def require_currency_code(self) -> str:
        return _require_value("SHOP_CURRENCY_CODE", self.currency_code)


def _require_value(name: str, value: str | None) -> str:
    if not value:
        raise ConfigurationMissingError(f"Missing required environment variable: {name}")
    return value


def _optional_env(name: str) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or None


def _int_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigurationMissingError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigurationMissingError(f"{name} must be >= {minimum}, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationMissingError(f"{name} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ConfigurationMissingError(f"{name} must be positive, got {value}")
    return value


def load_sync_settings_from_env() -> SyncSettings:
    return SyncSettings(
        page_size=_int_env("SHOPIFY_SYNC_PAGE_SIZE", 100, minimum=1),
        overlap_days=_int_env("SHOPIFY_SYNC_OVERLAP_DAYS", 2),
        initial_backfill_days=_int_env("SHOPIFY_INITIAL_BACKFILL_DAYS", 30),
    )


def load_app_config_from_env() -> AppConfig:
    """Load config from env; shop values stay None when unset."""
    currency_code = _optional_env("SHOP_CURRENCY_CODE")
    return AppConfig(
        database_url=_optional_env("DATABASE_URL") or DEFAULT_DATABASE_URL,
        shop_domain=_optional_env("SHOPIFY_SHOP_DOMAIN"),
        access_token=_optional_env("SHOPIFY_ADMIN_ACCESS_TOKEN"),
        api_version=_optional_env("SHOPIFY_API_VERSION") or DEFAULT_API_VERSION,
        timezone=_optional_env("SHOP_TIMEZONE_IANA"),
        currency_code=currency_code.upper() if currency_code else None,
        http_timeout_seconds=_float_env("SHOPIFY_HTTP_TIMEOUT_SECONDS", 30.0),
        log_level=(_optional_env("SHOPINCOME_LOG_LEVEL") or "INFO").upper(),
        sync=load_sync_settings_from_env(),
    )
