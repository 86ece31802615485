from __future__ import annotations

from collections.abc import Callable
import json
import sys
from typing import Any, TypeVar

from dotenv import load_dotenv
from loguru import logger
import typer

from shopincome.adapters.db.facade import DB
from shopincome.core.config import AppConfig, load_app_config_from_env
from shopincome.core.errors import ShopIncomeError
from shopincome.infra.clients.shopify import ShopifyClient
from shopincome.jobs.sync import SyncProcessor, bootstrap_shop_config
from shopincome.services.buckets import Granularity
from shopincome.services.date_range import RangeRequest
from shopincome.services.income_queries import IncomeQueries

# Load environment variables from .env
load_dotenv()

T = TypeVar("T")

app = typer.Typer(
    help="shopincome: Shopify order income sync and local-time reporting.",
    no_args_is_help=True,
)


def _configure_logging(level: str) -> None:
    # stdout is reserved for JSON output
    logger.remove()
    logger.add(
        sys.stderr,
        format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}",
        level=level,
    )


def _load_config() -> AppConfig:
    config = load_app_config_from_env()
    _configure_logging(config.log_level)
    return config


def _emit(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, sort_keys=False, default=str))


def _run(action: Callable[[], T]) -> T:
    """Run ``action``, turning domain errors into a one-line message and exit 1."""
    try:
        return action()
    except ShopIncomeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None


def _range_request(
    days: int | None, from_date: str | None, to_date: str | None
) -> RangeRequest:
    if days is None and from_date is None and to_date is None:
        days = 7
    return RangeRequest(days=days, from_date=from_date, to_date=to_date)


def _queries(config: AppConfig) -> IncomeQueries:
    return IncomeQueries(DB(config.database_url))


DaysOption = typer.Option(None, "--days", help="Relative window: 1, 2, 3, 7, 14, 30, 90 or 365")
FromOption = typer.Option(None, "--from", help="Local start date (YYYY-MM-DD)")
ToOption = typer.Option(None, "--to", help="Local end date (YYYY-MM-DD)")
IncludeExcludedOption = typer.Option(
    False, "--include-excluded", help="Include cancelled, test and fully refunded orders"
)


@app.command("init-db")
def init_db(
    url: str | None = typer.Option(None, help="Database URL (defaults to DATABASE_URL)"),
) -> None:
    """Create all tables in the configured database."""
    config = _load_config()
    db = DB(url or config.database_url)
    db.create_schema()
    _emit({"database_url": db.url, "status": "ok"})


@app.command("bootstrap")
def bootstrap() -> None:
    """Write shop_config from SHOPIFY_SHOP_DOMAIN, SHOP_TIMEZONE_IANA and SHOP_CURRENCY_CODE."""
    config = _load_config()
    db = DB(config.database_url)
    shop_config = _run(lambda: bootstrap_shop_config(db, config))
    _emit(
        {
            "shop_domain": shop_config.shop_domain,
            "timezone": shop_config.timezone,
            "currency_code": shop_config.currency_code,
        }
    )


@app.command("sync")
def sync() -> None:
    """Run one order income sync against Shopify."""
    config = _load_config()
    db = DB(config.database_url)

    def _sync() -> dict[str, Any]:
        client = ShopifyClient(
            shop_domain=db.require_shop_config().shop_domain,
            access_token=config.require_access_token(),
            api_version=config.api_version,
            timeout_seconds=config.http_timeout_seconds,
        )
        processor = SyncProcessor(db=db, source=client, settings=config.sync)
        return processor.run().to_dict()

    _emit(_run(_sync))


@app.command("status")
def status() -> None:
    """Show shop config, sync state, recent runs and row counts."""
    config = _load_config()
    _emit(_run(lambda: _queries(config).get_sync_status()))


@app.command("daily")
def daily(
    days: int | None = DaysOption,
    from_date: str | None = FromOption,
    to_date: str | None = ToOption,
    granularity: Granularity | None = typer.Option(
        None, help="Override bucket size (hour or day)"
    ),
    compare: bool = typer.Option(False, "--compare", help="Add the previous period"),
    include_excluded: bool = IncludeExcludedOption,
) -> None:
    """Contiguous hourly or daily income series in shop-local time."""
    config = _load_config()
    request = _range_request(days, from_date, to_date)
    _emit(
        _run(
            lambda: _queries(config).get_daily_series(
                request,
                granularity=granularity,
                compare=compare,
                include_excluded=include_excluded,
            )
        )
    )


@app.command("summary")
def summary(
    days: int | None = DaysOption,
    from_date: str | None = FromOption,
    to_date: str | None = ToOption,
    compare: bool = typer.Option(False, "--compare", help="Add previous period deltas"),
    include_excluded: bool = IncludeExcludedOption,
) -> None:
    """Income totals, order counts and average order value."""
    config = _load_config()
    request = _range_request(days, from_date, to_date)
    _emit(
        _run(
            lambda: _queries(config).get_summary(
                request, compare=compare, include_excluded=include_excluded
            )
        )
    )


@app.command("orders")
def orders(
    days: int | None = DaysOption,
    from_date: str | None = FromOption,
    to_date: str | None = ToOption,
    include_excluded: bool = IncludeExcludedOption,
    sort: str = typer.Option(
        "processed_at_desc",
        help="processed_at_desc, processed_at_asc, net_desc or refunds_desc",
    ),
    page: int = typer.Option(1, help="Page number (1-based)"),
    page_size: int = typer.Option(50, help="Orders per page"),
) -> None:
    """List derived order rows in a range."""
    config = _load_config()
    request = _range_request(days, from_date, to_date)
    _emit(
        _run(
            lambda: _queries(config).list_orders(
                request,
                include_excluded=include_excluded,
                sort=sort,
                page=page,
                page_size=page_size,
            )
        )
    )


@app.command("order")
def order(
    order_id: str = typer.Argument(..., help="Shopify order GID"),
    raw: str = typer.Option("summary", help="summary or full"),
) -> None:
    """Show one order's income row and its stored payload."""
    config = _load_config()
    _emit(_run(lambda: _queries(config).get_order_detail(order_id, raw=raw)))


@app.command("reconcile")
def reconcile(
    days: int | None = DaysOption,
    from_date: str | None = FromOption,
    to_date: str | None = ToOption,
    include_excluded: bool = IncludeExcludedOption,
) -> None:
    """Totals, counts and quality signals for checking against Shopify reports."""
    config = _load_config()
    request = _range_request(days, from_date, to_date)
    _emit(
        _run(
            lambda: _queries(config).get_reconcile(
                request, include_excluded=include_excluded
            )
        )
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
