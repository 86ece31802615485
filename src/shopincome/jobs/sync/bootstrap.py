from __future__ import annotations

from loguru import logger

from shopincome.adapters.db.facade import DB
from shopincome.adapters.db.models import ShopConfig
from shopincome.core.config import AppConfig
from shopincome.core.errors import ConfigurationMissingError, InvalidRangeError
from shopincome.infra.clients.shopify import normalize_shop_domain
from shopincome.services.date_range import load_zone


def bootstrap_shop_config(db: DB, config: AppConfig) -> ShopConfig:
    """Write the singleton shop config from env values and ensure sync state.

    Raises:
        ConfigurationMissingError: A required value is unset or the timezone
            is not a known IANA name.
    """
    shop_domain = normalize_shop_domain(config.require_shop_domain())
    timezone = config.require_timezone()
    currency_code = config.require_currency_code()
    try:
        load_zone(timezone)
    except InvalidRangeError as e:
        raise ConfigurationMissingError(
            f"SHOP_TIMEZONE_IANA is not a known IANA timezone: {timezone!r}"
        ) from e

    shop_config = db.upsert_shop_config(
        shop_domain=shop_domain, timezone=timezone, currency_code=currency_code
    )
    db.ensure_sync_state()
    logger.bind(shop=shop_domain, timezone=timezone, currency=currency_code).info(
        "Bootstrapped shop config for {}", shop_domain
    )
    return shop_config
