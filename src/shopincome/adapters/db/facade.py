from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
import uuid

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from shopincome.adapters.db.models import (
    SINGLETON_ID,
    Base,
    OrderIncome,
    RefundSource,
    RunProgress,
    ShopConfig,
    ShopifyOrderRaw,
    SyncRunLog,
    SyncState,
    utcnow,
)
from shopincome.core.errors import ConfigurationMissingError
from shopincome.core.income import ExclusionDecision, IncomeComponents

RUN_STATUS_RUNNING = "running"
RUN_STATUS_SUCCESS = "success"
RUN_STATUS_FAILURE = "failure"


class DB:
    """Database service layer for shop config, sync state and order income."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///shopincome.db")
        """
        self._url = url
        self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @property
    def url(self) -> str:
        return self._url

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    # Shop config ---------------------------------------------------------

    def get_shop_config(self) -> ShopConfig | None:
        with self.session() as session:  # type: Session
            config = session.get(ShopConfig, SINGLETON_ID)
            if config:
                session.expunge(config)
            return config

    def require_shop_config(self) -> ShopConfig:
        """Return the shop config or raise if bootstrap has not run.

        Raises:
            ConfigurationMissingError: No shop_config row exists
        """
        config = self.get_shop_config()
        if config is None:
            raise ConfigurationMissingError(
                "shop_config not found; run bootstrap first"
            )
        return config

    def upsert_shop_config(
        self, *, shop_domain: str, timezone: str, currency_code: str
    ) -> ShopConfig:
        """Create or update the singleton shop config.

        Args:
            shop_domain: Store domain (e.g., "example.myshopify.com")
            timezone: IANA timezone name used for local-day reporting
            currency_code: Shop currency; every synced order must use it

        Returns:
            Created or updated ShopConfig instance
        """
        with self.session() as session:  # type: Session
            config = session.get(ShopConfig, SINGLETON_ID)
            if config is None:
                config = ShopConfig(
                    id=SINGLETON_ID,
                    shop_domain=shop_domain,
                    timezone=timezone,
                    currency_code=currency_code,
                )
                session.add(config)
            else:
                config.shop_domain = shop_domain
                config.timezone = timezone
                config.currency_code = currency_code
                config.updated_at = utcnow()
            session.flush()
            session.refresh(config)
            session.expunge(config)
            return config

    # Sync state ----------------------------------------------------------

    def get_sync_state(self) -> SyncState | None:
        with self.session() as session:  # type: Session
            state = session.get(SyncState, SINGLETON_ID)
            if state:
                session.expunge(state)
            return state

    def ensure_sync_state(self) -> SyncState:
        """Return the singleton sync state, inserting an empty one if missing."""
        with self.session() as session:  # type: Session
            state = session.get(SyncState, SINGLETON_ID)
            if state is None:
                state = SyncState(id=SINGLETON_ID)
                session.add(state)
                session.flush()
                session.refresh(state)
            session.expunge(state)
            return state

    def _update_sync_state(self, **values: Any) -> None:
        with self.session() as session:  # type: Session
            state = session.get(SyncState, SINGLETON_ID)
            if state is None:
                state = SyncState(id=SINGLETON_ID)
                session.add(state)
            for key, value in values.items():
                setattr(state, key, value)
            state.updated_at = utcnow()

    def mark_sync_started(self, started_at: datetime) -> None:
        self._update_sync_state(
            last_sync_started_at=started_at,
            last_sync_status=RUN_STATUS_RUNNING,
            last_sync_error=None,
        )

    def mark_sync_succeeded(
        self, finished_at: datetime, max_processed_at: datetime | None
    ) -> None:
        """Record success and advance the watermark without ever moving it back.

        Args:
            finished_at: Run finish time
            max_processed_at: Latest processed_at seen by the run, or None when
                the run saw no orders (watermark left unchanged)
        """
        with self.session() as session:  # type: Session
            state = session.get(SyncState, SINGLETON_ID)
            if state is None:
                state = SyncState(id=SINGLETON_ID)
                session.add(state)
            current = state.watermark_processed_at
            if max_processed_at is not None and (
                current is None or max_processed_at > current
            ):
                state.watermark_processed_at = max_processed_at
            state.last_sync_finished_at = finished_at
            state.last_sync_status = RUN_STATUS_SUCCESS
            state.last_sync_error = None
            state.updated_at = utcnow()

    def mark_sync_failed(self, finished_at: datetime, error: str) -> None:
        self._update_sync_state(
            last_sync_finished_at=finished_at,
            last_sync_status=RUN_STATUS_FAILURE,
            last_sync_error=error,
        )

    # Run log -------------------------------------------------------------

    def start_run_log(self, started_at: datetime) -> str:
        """Insert a running log row and return its id."""
        run_id = str(uuid.uuid4())
        with self.session() as session:  # type: Session
            session.add(
                SyncRunLog(
                    id=run_id,
                    started_at=started_at,
                    status=RUN_STATUS_RUNNING,
                    orders_fetched=0,
                    orders_upserted=0,
                    orders_excluded=0,
                )
            )
        return run_id

    def update_run_log_progress(self, run_id: str, progress: RunProgress) -> None:
        with self.session() as session:  # type: Session
            run = session.get(SyncRunLog, run_id)
            if run is None:
                return
            run.orders_fetched = progress.orders_fetched
            run.orders_upserted = progress.orders_upserted
            run.orders_excluded = progress.orders_excluded
            run.last_cursor = progress.last_cursor

    def finish_run_log(
        self,
        run_id: str,
        *,
        status: str,
        finished_at: datetime,
        progress: RunProgress,
        error: str | None = None,
    ) -> None:
        with self.session() as session:  # type: Session
            run = session.get(SyncRunLog, run_id)
            if run is None:
                return
            run.status = status
            run.finished_at = finished_at
            run.orders_fetched = progress.orders_fetched
            run.orders_upserted = progress.orders_upserted
            run.orders_excluded = progress.orders_excluded
            run.last_cursor = progress.last_cursor
            run.error = error

    def list_recent_runs(self, limit: int = 10) -> list[SyncRunLog]:
        with self.session() as session:  # type: Session
            runs = list(
                session.scalars(
                    select(SyncRunLog)
                    .order_by(SyncRunLog.started_at.desc())
                    .limit(limit)
                )
            )
            for run in runs:
                session.expunge(run)
            return runs

    # Orders --------------------------------------------------------------

    def save_order(
        self,
        *,
        payload: dict[str, Any],
        order_id: str,
        processed_at: datetime,
        components: IncomeComponents,
        decision: ExclusionDecision,
    ) -> None:
        """Upsert the raw payload and its derived income row in one transaction.

        Both rows are keyed by the Shopify order id so re-running a sync over
        the same window overwrites instead of duplicating.
        """
        now = utcnow()
        with self.session() as session:  # type: Session
            raw = session.get(ShopifyOrderRaw, order_id)
            if raw is None:
                raw = ShopifyOrderRaw(
                    shopify_order_id=order_id,
                    processed_at=processed_at,
                    payload=payload,
                    created_at=now,
                    updated_at=now,
                )
                session.add(raw)
            else:
                raw.processed_at = processed_at
                raw.payload = payload
                raw.updated_at = now
            session.flush()

            income = session.get(OrderIncome, order_id)
            if income is None:
                income = OrderIncome(shopify_order_id=order_id)
                session.add(income)
            income.currency_code = components.currency
            income.processed_at = processed_at
            income.subtotal = components.subtotal.amount
            income.shipping = components.shipping.amount
            income.tax = components.tax.amount
            income.discounts = components.discounts.amount
            income.gross = components.gross.amount
            income.refunds = components.refunds.amount
            income.net = components.net.amount
            income.excluded = decision.exclude
            income.excluded_reason = decision.reason.value
            income.computed_at = now

    def get_order_income(self, order_id: str) -> OrderIncome | None:
        with self.session() as session:  # type: Session
            income = session.get(OrderIncome, order_id)
            if income:
                session.expunge(income)
            return income

    def get_order_raw(self, order_id: str) -> ShopifyOrderRaw | None:
        with self.session() as session:  # type: Session
            raw = session.get(ShopifyOrderRaw, order_id)
            if raw:
                session.expunge(raw)
            return raw

    def list_order_income(
        self,
        start: datetime,
        end: datetime,
        *,
        include_excluded: bool = False,
    ) -> list[OrderIncome]:
        """Derived rows with ``start <= processed_at <= end``, oldest first.

        Args:
            start: Inclusive lower bound (aware)
            end: Inclusive upper bound (aware)
            include_excluded: Also return cancelled, test and fully refunded orders
        """
        stmt = (
            select(OrderIncome)
            .where(OrderIncome.processed_at >= start)
            .where(OrderIncome.processed_at <= end)
            .order_by(OrderIncome.processed_at, OrderIncome.shopify_order_id)
        )
        if not include_excluded:
            stmt = stmt.where(OrderIncome.excluded.is_(False))
        with self.session() as session:  # type: Session
            rows = list(session.scalars(stmt))
            for row in rows:
                session.expunge(row)
            return rows

    def count_excluded_in_range(self, start: datetime, end: datetime) -> int:
        stmt = (
            select(func.count())
            .select_from(OrderIncome)
            .where(OrderIncome.processed_at >= start)
            .where(OrderIncome.processed_at <= end)
            .where(OrderIncome.excluded.is_(True))
        )
        with self.session() as session:  # type: Session
            return int(session.scalar(stmt) or 0)

    def list_refund_sources(
        self, end: datetime, *, include_excluded: bool = False
    ) -> list[RefundSource]:
        """Payloads with refunds of orders processed no later than ``end``.

        A refund can only follow its order, so these are every order whose
        refunds might fall inside a range ending at ``end``. Payloads without
        refunds are skipped before they reach the refund parser.
        """
        stmt = (
            select(
                ShopifyOrderRaw.shopify_order_id,
                OrderIncome.excluded,
                ShopifyOrderRaw.payload,
            )
            .join(
                OrderIncome,
                OrderIncome.shopify_order_id == ShopifyOrderRaw.shopify_order_id,
            )
            .where(ShopifyOrderRaw.processed_at <= end)
            .order_by(ShopifyOrderRaw.processed_at)
        )
        if not include_excluded:
            stmt = stmt.where(OrderIncome.excluded.is_(False))
        with self.session() as session:  # type: Session
            return [
                RefundSource(
                    shopify_order_id=order_id, excluded=excluded, payload=payload
                )
                for order_id, excluded, payload in session.execute(stmt)
                if payload.get("refunds")
            ]

    def count_rows(self) -> dict[str, int]:
        """Row counts for the order tables, used by status views."""
        with self.session() as session:  # type: Session
            return {
                "raw_orders": int(
                    session.scalar(select(func.count()).select_from(ShopifyOrderRaw))
                    or 0
                ),
                "order_income": int(
                    session.scalar(select(func.count()).select_from(OrderIncome))
                    or 0
                ),
                "excluded_orders": int(
                    session.scalar(
                        select(func.count())
                        .select_from(OrderIncome)
                        .where(OrderIncome.excluded.is_(True))
                    )
                    or 0
                ),
            }
