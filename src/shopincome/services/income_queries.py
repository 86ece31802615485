from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal
from zoneinfo import ZoneInfo

import loguru
from loguru import logger

from shopincome.adapters.db.facade import DB
from shopincome.adapters.db.models import OrderIncome, ShopConfig, SyncRunLog
from shopincome.adapters.shopify.refunds import RefundEvent, extract_refund_events
from shopincome.core.errors import InvalidQueryError, OrderNotFoundError
from shopincome.core.money import ARITHMETIC, Money, MoneyValue
from shopincome.services.buckets import (
    Granularity,
    IncomeTotals,
    build_buckets,
    choose_granularity,
)
from shopincome.services.comparison import compute_delta
from shopincome.services.date_range import (
    LocalRange,
    RangeRequest,
    load_zone,
    previous_range,
)
from shopincome.services.payload_summary import summarize_order_payload

SortOption = Literal["processed_at_desc", "processed_at_asc", "net_desc", "refunds_desc"]
SORT_OPTIONS: tuple[str, ...] = (
    "processed_at_desc",
    "processed_at_asc",
    "net_desc",
    "refunds_desc",
)
RawMode = Literal["summary", "full"]

RECENT_RUNS_LIMIT = 10
RUN_ERROR_DISPLAY_CHARS = 500
TOP_REFUNDED_LIMIT = 10
MAX_PAGE_SIZE = 250

DELTA_METRICS = (
    "order_revenue",
    "gross",
    "refunds",
    "net",
    "shipping",
    "tax",
    "discounts",
)

RangeInput = RangeRequest | LocalRange


class IncomeQueriesLogger:
    """Handles all logging for IncomeQueries."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def query_start(self, name: str, local_range: LocalRange) -> None:
        self._logger.bind(
            query=name,
            start=local_range.start.isoformat(),
            end=local_range.end.isoformat(),
        ).debug(
            "Running {} for {}..{} ({})",
            name,
            local_range.from_date.isoformat(),
            local_range.to_date.isoformat(),
            local_range.timezone,
        )

    def rows_loaded(self, name: str, row_count: int, refund_count: int) -> None:
        self._logger.bind(query=name, rows=row_count, refunds=refund_count).debug(
            "{} loaded {} order rows and {} refund events", name, row_count, refund_count
        )


def _format_instant(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money_value(amount: Decimal) -> dict[str, str]:
    return MoneyValue.from_decimal(amount).to_dict()


def order_row_to_dict(row: OrderIncome, zone: ZoneInfo | None = None) -> dict[str, Any]:
    """Serialize a derived row; adds the local processed date when a zone is given."""
    data: dict[str, Any] = {
        "shopify_order_id": row.shopify_order_id,
        "processed_at": row.processed_at.isoformat(),
        "currency_code": row.currency_code,
        "excluded": row.excluded,
        "excluded_reason": row.excluded_reason,
        "subtotal": _money_value(row.subtotal),
        "shipping": _money_value(row.shipping),
        "tax": _money_value(row.tax),
        "discounts": _money_value(row.discounts),
        "gross": _money_value(row.gross),
        "refunds": _money_value(row.refunds),
        "net": _money_value(row.net),
        "order_revenue": _money_value(row.net),
    }
    if zone is not None:
        data["processed_local_date"] = row.processed_at.astimezone(zone).date().isoformat()
    return data


def summarize_rows(rows: Iterable[OrderIncome], currency: str) -> IncomeTotals:
    """Range totals with refunds taken from each order row."""
    totals = IncomeTotals(currency=currency)
    for row in rows:
        totals.add_order(row)
        totals.add_refund(Money.of(row.refunds, row.currency_code))
    return totals


def average_order_value(totals: IncomeTotals) -> MoneyValue:
    if totals.orders_count == 0:
        return MoneyValue.from_decimal(Decimal(0))
    return MoneyValue.from_decimal(
        ARITHMETIC.divide(totals.net.amount, Decimal(totals.orders_count))
    )


class IncomeQueries:
    """Read-only aggregates over synced order income."""

    def __init__(
        self,
        db: DB,
        *,
        now: Callable[[], datetime] | None = None,
        queries_logger: IncomeQueriesLogger | None = None,
    ) -> None:
        self._db = db
        self._now = now or (lambda: datetime.now(UTC))
        self._logger = queries_logger or IncomeQueriesLogger()

    def _resolve(self, config: ShopConfig, range_input: RangeInput) -> LocalRange:
        if isinstance(range_input, LocalRange):
            return range_input
        return range_input.resolve(config.timezone, self._now())

    def _refund_events(
        self, local_range: LocalRange, include_excluded: bool
    ) -> list[RefundEvent]:
        events: list[RefundEvent] = []
        for source in self._db.list_refund_sources(
            local_range.end, include_excluded=include_excluded
        ):
            for event in extract_refund_events(source.payload):
                if local_range.start <= event.created_at <= local_range.end:
                    events.append(event)
        return events

    def _series(
        self,
        config: ShopConfig,
        local_range: LocalRange,
        granularity: Granularity,
        include_excluded: bool,
    ) -> list[dict[str, Any]]:
        rows = self._db.list_order_income(
            local_range.start, local_range.end, include_excluded=include_excluded
        )
        events = self._refund_events(local_range, include_excluded)
        self._logger.rows_loaded("daily_series", len(rows), len(events))
        buckets = build_buckets(
            rows, events, local_range, granularity, config.currency_code
        )
        return [bucket.to_dict() for bucket in buckets]

    def get_daily_series(
        self,
        range_input: RangeInput,
        granularity: Granularity | str | None = None,
        compare: bool = False,
        include_excluded: bool = False,
    ) -> dict[str, Any]:
        """Contiguous bucket series for the range, optionally with the previous period.

        The comparison series uses the same granularity as the current one.
        """
        config = self._db.require_shop_config()
        local_range = self._resolve(config, range_input)
        chosen = choose_granularity(local_range, granularity)
        self._logger.query_start("daily_series", local_range)

        result: dict[str, Any] = {
            "range": local_range.to_dict(),
            "currency_code": config.currency_code,
            "granularity": chosen.value,
            "buckets": self._series(config, local_range, chosen, include_excluded),
        }
        if compare:
            comparison_range = previous_range(local_range)
            result["comparison_range"] = comparison_range.to_dict()
            result["comparison_buckets"] = self._series(
                config, comparison_range, chosen, include_excluded
            )
        return result

    def _summary_block(
        self, config: ShopConfig, local_range: LocalRange, include_excluded: bool
    ) -> tuple[dict[str, Any], IncomeTotals, MoneyValue]:
        rows = self._db.list_order_income(
            local_range.start, local_range.end, include_excluded=include_excluded
        )
        totals = summarize_rows(rows, config.currency_code)
        aov = average_order_value(totals)
        block = {
            "range": local_range.to_dict(),
            "totals": totals.money_dict(),
            "orders_included": totals.orders_count,
            "orders_excluded_in_range": self._db.count_excluded_in_range(
                local_range.start, local_range.end
            ),
            "average_order_value": aov.to_dict(),
        }
        return block, totals, aov

    def get_summary(
        self,
        range_input: RangeInput,
        compare: bool = False,
        include_excluded: bool = False,
    ) -> dict[str, Any]:
        """Range totals, order counts and average order value (net per order)."""
        config = self._db.require_shop_config()
        local_range = self._resolve(config, range_input)
        self._logger.query_start("summary", local_range)

        block, totals, aov = self._summary_block(config, local_range, include_excluded)
        result: dict[str, Any] = {"currency_code": config.currency_code, **block}
        if not compare:
            return result

        comparison_range = previous_range(local_range)
        previous_block, previous_totals, previous_aov = self._summary_block(
            config, comparison_range, include_excluded
        )
        deltas = {
            metric: compute_delta(
                getattr(totals, metric).amount,
                getattr(previous_totals, metric).amount,
            ).to_dict()
            for metric in DELTA_METRICS
        }
        deltas["orders_included"] = compute_delta(
            Decimal(totals.orders_count), Decimal(previous_totals.orders_count)
        ).to_dict()
        deltas["average_order_value"] = compute_delta(
            Decimal(aov.raw), Decimal(previous_aov.raw)
        ).to_dict()
        result["comparison"] = previous_block
        result["deltas"] = deltas
        return result

    def get_sync_status(self) -> dict[str, Any]:
        """Operational view; works before bootstrap with ``config`` set to None."""
        config = self._db.get_shop_config()
        state = self._db.get_sync_state()
        runs = self._db.list_recent_runs(RECENT_RUNS_LIMIT)
        return {
            "config": (
                {
                    "shop_domain": config.shop_domain,
                    "timezone": config.timezone,
                    "currency_code": config.currency_code,
                }
                if config is not None
                else None
            ),
            "sync_state": (
                {
                    "watermark_processed_at": _format_instant(
                        state.watermark_processed_at
                    ),
                    "last_sync_started_at": _format_instant(state.last_sync_started_at),
                    "last_sync_finished_at": _format_instant(
                        state.last_sync_finished_at
                    ),
                    "last_sync_status": state.last_sync_status,
                    "last_sync_error": state.last_sync_error,
                }
                if state is not None
                else None
            ),
            "recent_runs": [_run_to_dict(run) for run in runs],
            "counts": self._db.count_rows(),
        }

    def list_orders(
        self,
        range_input: RangeInput,
        include_excluded: bool = False,
        sort: SortOption | str = "processed_at_desc",
        page: int = 1,
        page_size: int = 50,
    ) -> dict[str, Any]:
        """One page of derived rows plus the totals of the whole selection."""
        if sort not in SORT_OPTIONS:
            raise InvalidQueryError(
                f"sort must be one of: {', '.join(SORT_OPTIONS)}"
            )
        if page < 1:
            raise InvalidQueryError(f"page must be >= 1, got {page}")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise InvalidQueryError(
                f"page_size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}"
            )

        config = self._db.require_shop_config()
        local_range = self._resolve(config, range_input)
        self._logger.query_start("list_orders", local_range)
        zone = local_range.zone

        rows = self._db.list_order_income(
            local_range.start, local_range.end, include_excluded=include_excluded
        )
        ordered = _sort_rows(rows, sort)
        offset = (page - 1) * page_size
        totals = summarize_rows(rows, config.currency_code)
        return {
            "range": local_range.to_dict(),
            "currency_code": config.currency_code,
            "sort": sort,
            "page": page,
            "page_size": page_size,
            "total": len(rows),
            "orders": [
                order_row_to_dict(row, zone)
                for row in ordered[offset : offset + page_size]
            ],
            "summary": {
                "totals": totals.money_dict(),
                "orders_included": totals.orders_count,
                "orders_excluded_in_range": self._db.count_excluded_in_range(
                    local_range.start, local_range.end
                ),
            },
        }

    def get_order_detail(self, order_id: str, raw: RawMode | str = "summary") -> dict[str, Any]:
        """Derived row for one order plus its stored payload or a digest of it.

        Raises:
            OrderNotFoundError: No derived row exists for ``order_id``
            InvalidQueryError: ``raw`` is neither "summary" nor "full"
        """
        if raw not in ("summary", "full"):
            raise InvalidQueryError("raw must be one of: summary, full")
        config = self._db.require_shop_config()
        row = self._db.get_order_income(order_id)
        if row is None:
            raise OrderNotFoundError(order_id)
        stored = self._db.get_order_raw(order_id)
        payload = stored.payload if stored is not None else None
        return {
            "order": order_row_to_dict(row, load_zone(config.timezone)),
            "timezone": config.timezone,
            "raw": payload if raw == "full" else summarize_order_payload(payload),
        }

    def get_reconcile(
        self, range_input: RangeInput, include_excluded: bool = False
    ) -> dict[str, Any]:
        """Totals, in-range counts and data quality signals for a range."""
        config = self._db.require_shop_config()
        local_range = self._resolve(config, range_input)
        self._logger.query_start("reconcile", local_range)

        all_rows = self._db.list_order_income(
            local_range.start, local_range.end, include_excluded=True
        )
        selected = (
            all_rows if include_excluded else [row for row in all_rows if not row.excluded]
        )
        excluded_count = sum(1 for row in all_rows if row.excluded)
        totals = summarize_rows(selected, config.currency_code)

        negative_net = [row for row in selected if row.net < 0]
        refunds_over_gross = [row for row in selected if row.refunds > row.gross]
        top_refunded = sorted(
            (row for row in selected if row.refunds > 0),
            key=lambda row: (row.refunds, row.shopify_order_id),
            reverse=True,
        )[:TOP_REFUNDED_LIMIT]

        return {
            "range": local_range.to_dict(),
            "currency_code": config.currency_code,
            "totals": totals.money_dict(),
            "counts": {
                "total_in_range": len(all_rows),
                "excluded_in_range": excluded_count,
                "included_in_range": len(all_rows) - excluded_count,
            },
            "quality_signals": {
                "orders_with_negative_net": len(negative_net),
                "orders_with_refunds_over_gross": len(refunds_over_gross),
                "top_refunded_orders": [
                    {
                        "shopify_order_id": row.shopify_order_id,
                        "refunds": _money_value(row.refunds),
                        "gross": _money_value(row.gross),
                    }
                    for row in top_refunded
                ],
            },
        }


def _run_to_dict(run: SyncRunLog) -> dict[str, Any]:
    error = run.error
    if error is not None and len(error) > RUN_ERROR_DISPLAY_CHARS:
        error = error[:RUN_ERROR_DISPLAY_CHARS] + "..."
    return {
        "id": run.id,
        "started_at": _format_instant(run.started_at),
        "finished_at": _format_instant(run.finished_at),
        "status": run.status,
        "orders_fetched": run.orders_fetched,
        "orders_upserted": run.orders_upserted,
        "orders_excluded": run.orders_excluded,
        "last_cursor": run.last_cursor,
        "error": error,
    }


def _sort_rows(rows: Sequence[OrderIncome], sort: str) -> list[OrderIncome]:
    # Ties always break on order id descending.
    ordered = sorted(rows, key=lambda row: row.shopify_order_id, reverse=True)
    if sort == "processed_at_asc":
        return sorted(ordered, key=lambda row: row.processed_at)
    if sort == "net_desc":
        return sorted(ordered, key=lambda row: row.net, reverse=True)
    if sort == "refunds_desc":
        return sorted(ordered, key=lambda row: row.refunds, reverse=True)
    return sorted(ordered, key=lambda row: row.processed_at, reverse=True)
