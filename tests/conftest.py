"""Shared test fixtures."""

from __future__ import annotations

import pytest

_ENV_VARS = (
    "DATABASE_URL",
    "SHOPIFY_SHOP_DOMAIN",
    "SHOPIFY_ADMIN_ACCESS_TOKEN",
    "SHOPIFY_API_VERSION",
    "SHOP_TIMEZONE_IANA",
    "SHOP_CURRENCY_CODE",
    "SHOPIFY_SYNC_PAGE_SIZE",
    "SHOPIFY_SYNC_OVERLAP_DAYS",
    "SHOPIFY_INITIAL_BACKFILL_DAYS",
    "SHOPIFY_HTTP_TIMEOUT_SECONDS",
    "SHOPINCOME_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's shell or .env values out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
