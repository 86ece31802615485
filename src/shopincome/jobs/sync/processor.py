"""Order income sync: Shopify orders into raw and derived rows.

A run reads from a watermark minus an overlap, so recently updated orders
are fetched again and overwritten in place. Any normalization or currency
failure aborts the whole run; the watermark only moves on success.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import loguru
from loguru import logger

from shopincome.adapters.db.facade import DB, RUN_STATUS_FAILURE, RUN_STATUS_SUCCESS
from shopincome.adapters.db.models import RunProgress
from shopincome.adapters.shopify.normalizer import normalize_order
from shopincome.core.config import SyncSettings
from shopincome.core.errors import CurrencyMismatchError
from shopincome.core.income import compute_income, should_exclude
from shopincome.infra.clients.shopify import OrdersSource


@dataclass
class SyncResult:
    """Counts reported by a successful run."""

    run_id: str
    orders_fetched: int
    orders_upserted: int
    orders_excluded: int
    window_start: datetime
    watermark: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "orders_fetched": self.orders_fetched,
            "orders_upserted": self.orders_upserted,
            "orders_excluded": self.orders_excluded,
            "window_start": self.window_start.isoformat(),
            "watermark": self.watermark.isoformat() if self.watermark else None,
        }


class SyncProcessorLogger:
    """Handles all logging for SyncProcessor with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def run_start(self, run_id: str, window_start: datetime, watermark: datetime | None) -> None:
        """Log start of a sync run."""
        self._logger.bind(
            run_id=run_id,
            window_start=window_start.isoformat(),
            watermark=watermark.isoformat() if watermark else None,
        ).info("Starting order sync from {}", window_start.isoformat())

    def page_fetched(self, page_num: int, node_count: int, cursor: str | None) -> None:
        """Log a fetched page."""
        cursor_label = cursor or "none"
        self._logger.bind(page=page_num, nodes=node_count, cursor=cursor_label).debug(
            "Fetched page {} with {} orders (cursor: {})",
            page_num,
            node_count,
            cursor_label,
        )

    def order_rejected(self, order_id: str | None, error: Exception) -> None:
        """Log an order that aborts the run."""
        self._logger.bind(order_id=order_id, error=type(error).__name__).warning(
            "Order {} failed normalization; aborting run: {}", order_id, error
        )

    def run_succeeded(self, run_id: str, progress: RunProgress) -> None:
        """Log successful completion."""
        self._logger.bind(
            run_id=run_id,
            fetched=progress.orders_fetched,
            upserted=progress.orders_upserted,
            excluded=progress.orders_excluded,
        ).info(
            "Order sync complete: {} fetched, {} upserted, {} excluded",
            progress.orders_fetched,
            progress.orders_upserted,
            progress.orders_excluded,
        )

    def run_failed(self, run_id: str, error: Exception) -> None:
        """Log failed run."""
        self._logger.bind(run_id=run_id, error=type(error).__name__).error(
            "Order sync failed: {}", error
        )


def compute_window_start(
    now: datetime, watermark: datetime | None, settings: SyncSettings
) -> datetime:
    """``max(watermark - overlap, now - backfill)``, or ``now - backfill``."""
    backfill_start = now - timedelta(days=settings.initial_backfill_days)
    if watermark is None:
        return backfill_start
    return max(watermark - timedelta(days=settings.overlap_days), backfill_start)


def build_search_query(window_start: datetime) -> str:
    instant = window_start.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
    return f"processed_at:>='{instant}'"


class SyncProcessor:
    """Single entry point for a sync run; safe to invoke more than once."""

    def __init__(
        self,
        *,
        db: DB,
        source: OrdersSource,
        settings: SyncSettings | None = None,
        now: Callable[[], datetime] | None = None,
        processor_logger: SyncProcessorLogger | None = None,
    ) -> None:
        self._db = db
        self._source = source
        self._settings = settings or SyncSettings()
        self._now = now or (lambda: datetime.now(UTC))
        self._logger = processor_logger or SyncProcessorLogger()

    def run(self) -> SyncResult:
        """Fetch, normalize and persist every order in the sync window.

        Raises:
            ConfigurationMissingError: Bootstrap has not run; nothing is logged.
            ShopIncomeError: Any failure during the run, after it has been
                recorded in sync state and the run log.
        """
        config = self._db.require_shop_config()
        state = self._db.ensure_sync_state()
        started_at = self._now()
        window_start = compute_window_start(
            started_at, state.watermark_processed_at, self._settings
        )

        self._db.mark_sync_started(started_at)
        run_id = self._db.start_run_log(started_at)
        self._logger.run_start(run_id, window_start, state.watermark_processed_at)

        progress = RunProgress()
        max_processed_at: datetime | None = None
        try:
            query = build_search_query(window_start)
            after: str | None = None
            page_num = 0
            while True:
                page = self._source.fetch_orders_page(
                    query, self._settings.page_size, after
                )
                page_num += 1
                progress.orders_fetched += len(page.nodes)
                progress.last_cursor = page.end_cursor
                self._logger.page_fetched(page_num, len(page.nodes), page.end_cursor)

                for node in page.nodes:
                    processed_at = self._process_node(
                        node, config.currency_code, progress
                    )
                    if max_processed_at is None or processed_at > max_processed_at:
                        max_processed_at = processed_at

                self._db.update_run_log_progress(run_id, progress)
                if not page.has_next_page or not page.end_cursor:
                    break
                after = page.end_cursor
        except Exception as e:
            finished_at = self._now()
            message = str(e) or type(e).__name__
            self._db.mark_sync_failed(finished_at, message)
            self._db.finish_run_log(
                run_id,
                status=RUN_STATUS_FAILURE,
                finished_at=finished_at,
                progress=progress,
                error=message,
            )
            self._logger.run_failed(run_id, e)
            raise

        finished_at = self._now()
        self._db.mark_sync_succeeded(finished_at, max_processed_at)
        self._db.finish_run_log(
            run_id,
            status=RUN_STATUS_SUCCESS,
            finished_at=finished_at,
            progress=progress,
        )
        self._logger.run_succeeded(run_id, progress)
        state = self._db.ensure_sync_state()
        return SyncResult(
            run_id=run_id,
            orders_fetched=progress.orders_fetched,
            orders_upserted=progress.orders_upserted,
            orders_excluded=progress.orders_excluded,
            window_start=window_start,
            watermark=state.watermark_processed_at,
        )

    def _process_node(
        self, node: Mapping[str, Any], shop_currency: str, progress: RunProgress
    ) -> datetime:
        """Normalize, compute and persist one order; returns its processed_at.

        Everything is validated before the write so a failing order leaves no
        rows behind.
        """
        order_id = node.get("id") if isinstance(node, Mapping) else None
        try:
            normalized = normalize_order(node)
            components = compute_income(normalized.order, normalized.refunds)
            decision = should_exclude(normalized.order, normalized.refunds)
            if components.currency != shop_currency:
                raise CurrencyMismatchError(
                    shop_currency,
                    components.currency,
                    f"order {normalized.order.order_id} vs shop currency",
                )
        except Exception as e:
            self._logger.order_rejected(order_id, e)
            raise

        self._db.save_order(
            payload=dict(node),
            order_id=normalized.order.order_id,
            processed_at=normalized.order.processed_at,
            components=components,
            decision=decision,
        )
        progress.orders_upserted += 1
        if decision.exclude:
            progress.orders_excluded += 1
        return normalized.order.processed_at
