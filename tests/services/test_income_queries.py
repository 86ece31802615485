from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from shopincome.adapters.db.facade import RUN_STATUS_FAILURE, DB
from shopincome.adapters.db.models import RunProgress
from shopincome.core.errors import (
    ConfigurationMissingError,
    InvalidQueryError,
    InvalidRangeError,
    OrderNotFoundError,
)
from shopincome.services.date_range import RangeRequest
from shopincome.services.income_queries import IncomeQueries
from tests.fixtures.shopify_orders import (
    bootstrap_db,
    create_db,
    order_node,
    refund_node,
    save_node,
)

ORDER_A = "gid://shopify/Order/A"
ORDER_B = "gid://shopify/Order/B"
ORDER_C = "gid://shopify/Order/C"
ORDER_D = "gid://shopify/Order/D"
ORDER_E = "gid://shopify/Order/E"

NOW = datetime(2026, 2, 25, 18, 30, tzinfo=UTC)
CURRENT = RangeRequest(from_date="2026-02-25", to_date="2026-02-28")


@pytest.fixture
def db() -> DB:
    """Four orders around 2026-02-25..28 in Mexico City (UTC-6)."""
    db = bootstrap_db(create_db())
    save_node(
        db,
        order_node(
            order_id=ORDER_A,
            processed_at="2026-02-25T16:30:00Z",
            subtotal="1000.00",
            shipping="100.00",
            refunds=[refund_node(created_at="2026-02-27T18:00:00Z", total="200.00")],
        ),
    )
    save_node(
        db,
        order_node(
            order_id=ORDER_B,
            processed_at="2026-02-26T20:00:00Z",
            subtotal="500.00",
            shipping="0.00",
            tax="80.00",
        ),
    )
    save_node(
        db,
        order_node(
            order_id=ORDER_C,
            processed_at="2026-02-27T17:00:00Z",
            subtotal="300.00",
            shipping="0.00",
            cancelled_at="2026-02-27T19:00:00Z",
        ),
    )
    save_node(
        db,
        order_node(
            order_id=ORDER_D,
            processed_at="2026-02-22T18:00:00Z",
            subtotal="700.00",
            shipping="0.00",
        ),
    )
    return db


def create_queries(db: DB) -> IncomeQueries:
    return IncomeQueries(db, now=lambda: NOW)


class TestGetSummary:
    def test_totals_and_counts(self, db: DB) -> None:
        # Act
        summary = create_queries(db).get_summary(CURRENT)

        # Assert
        assert summary["currency_code"] == "MXN"
        assert summary["range"]["from"] == "2026-02-25"
        totals = summary["totals"]
        assert totals["gross"]["display"] == "1600.00"
        assert totals["refunds"]["display"] == "200.00"
        assert totals["net"]["display"] == "1400.00"
        assert totals["order_revenue"] == totals["net"]
        assert totals["shipping"]["display"] == "100.00"
        assert totals["tax"]["display"] == "240.00"
        assert summary["orders_included"] == 2
        assert summary["orders_excluded_in_range"] == 1
        assert summary["average_order_value"] == {
            "raw": "700.000000",
            "display": "700.00",
        }
        assert "comparison" not in summary

    def test_include_excluded_adds_cancelled(self, db: DB) -> None:
        summary = create_queries(db).get_summary(CURRENT, include_excluded=True)

        assert summary["orders_included"] == 3
        assert summary["totals"]["gross"]["display"] == "1900.00"

    def test_compare_with_previous_period(self, db: DB) -> None:
        # Act
        summary = create_queries(db).get_summary(CURRENT, compare=True)

        # Assert
        comparison = summary["comparison"]
        assert comparison["range"]["from"] == "2026-02-21"
        assert comparison["range"]["to"] == "2026-02-24"
        assert comparison["totals"]["net"]["display"] == "700.00"
        assert comparison["orders_included"] == 1
        deltas = summary["deltas"]
        assert deltas["net"] == {"percent_change": 100.0, "direction": "up"}
        assert deltas["gross"] == {"percent_change": 128.57, "direction": "up"}
        assert deltas["refunds"] == {"percent_change": None, "direction": "up"}
        assert deltas["orders_included"] == {"percent_change": 100.0, "direction": "up"}
        assert deltas["average_order_value"] == {
            "percent_change": 0.0,
            "direction": "flat",
        }

    def test_empty_range_has_zero_aov(self, db: DB) -> None:
        summary = create_queries(db).get_summary(
            RangeRequest(from_date="2026-01-01", to_date="2026-01-02")
        )

        assert summary["orders_included"] == 0
        assert summary["average_order_value"]["raw"] == "0.000000"

    def test_requires_bootstrap(self) -> None:
        with pytest.raises(ConfigurationMissingError):
            create_queries(create_db()).get_summary(CURRENT)

    def test_invalid_range_raises(self, db: DB) -> None:
        with pytest.raises(InvalidRangeError):
            create_queries(db).get_summary(RangeRequest(days=4))


class TestGetDailySeries:
    def test_daily_buckets_with_refunds_by_event_time(self, db: DB) -> None:
        # Act
        series = create_queries(db).get_daily_series(CURRENT)

        # Assert
        assert series["granularity"] == "day"
        buckets = {bucket["date"]: bucket for bucket in series["buckets"]}
        assert list(buckets) == ["2026-02-25", "2026-02-26", "2026-02-27", "2026-02-28"]
        assert buckets["2026-02-25"]["gross"]["display"] == "1100.00"
        assert buckets["2026-02-25"]["refunds"]["display"] == "0.00"
        assert buckets["2026-02-26"]["orders_count"] == 1
        assert buckets["2026-02-27"]["orders_count"] == 0
        assert buckets["2026-02-27"]["refunds"]["display"] == "200.00"
        assert buckets["2026-02-28"]["gross"]["raw"] == "0.000000"

    def test_include_excluded_fills_cancelled_day(self, db: DB) -> None:
        series = create_queries(db).get_daily_series(CURRENT, include_excluded=True)

        buckets = {bucket["date"]: bucket for bucket in series["buckets"]}
        assert buckets["2026-02-27"]["orders_count"] == 1
        assert buckets["2026-02-27"]["gross"]["display"] == "300.00"

    def test_relative_day_is_hourly_up_to_now(self, db: DB) -> None:
        # Act
        series = create_queries(db).get_daily_series(RangeRequest(days=1))

        # Assert
        assert series["granularity"] == "hour"
        keys = [bucket["date"] for bucket in series["buckets"]]
        assert len(keys) == 13
        by_key = {bucket["date"]: bucket for bucket in series["buckets"]}
        assert by_key["2026-02-25T10:00:00"]["orders_count"] == 1
        assert by_key["2026-02-25T10:00:00"]["net"]["display"] == "900.00"

    def test_compare_uses_same_granularity(self, db: DB) -> None:
        series = create_queries(db).get_daily_series(CURRENT, compare=True)

        assert series["comparison_range"]["from"] == "2026-02-21"
        dates = [bucket["date"] for bucket in series["comparison_buckets"]]
        assert dates == ["2026-02-21", "2026-02-22", "2026-02-23", "2026-02-24"]
        assert series["comparison_buckets"][1]["gross"]["display"] == "700.00"

    def test_granularity_override(self, db: DB) -> None:
        series = create_queries(db).get_daily_series(CURRENT, granularity="hour")

        assert len(series["buckets"]) == 96


class TestListOrders:
    def test_default_sort_is_newest_first(self, db: DB) -> None:
        # Act
        result = create_queries(db).list_orders(CURRENT)

        # Assert
        assert result["total"] == 2
        assert [order["shopify_order_id"] for order in result["orders"]] == [
            ORDER_B,
            ORDER_A,
        ]
        first = result["orders"][0]
        assert first["processed_local_date"] == "2026-02-26"
        assert first["net"]["display"] == "500.00"
        assert result["summary"]["orders_included"] == 2
        assert result["summary"]["orders_excluded_in_range"] == 1

    def test_sort_and_paging(self, db: DB) -> None:
        queries = create_queries(db)

        by_net = queries.list_orders(CURRENT, sort="net_desc")
        second_page = queries.list_orders(
            CURRENT, include_excluded=True, page=2, page_size=2
        )

        assert [o["shopify_order_id"] for o in by_net["orders"]] == [ORDER_A, ORDER_B]
        assert second_page["total"] == 3
        assert [o["shopify_order_id"] for o in second_page["orders"]] == [ORDER_A]

    def test_equal_keys_break_on_id_descending(self, db: DB) -> None:
        result = create_queries(db).list_orders(
            CURRENT, include_excluded=True, sort="refunds_desc"
        )

        assert [o["shopify_order_id"] for o in result["orders"]] == [
            ORDER_A,
            ORDER_C,
            ORDER_B,
        ]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sort": "amount"},
            {"page": 0},
            {"page_size": 0},
            {"page_size": 251},
        ],
    )
    def test_invalid_options_raise(self, db: DB, kwargs: dict[str, object]) -> None:
        with pytest.raises(InvalidQueryError):
            create_queries(db).list_orders(CURRENT, **kwargs)  # type: ignore[arg-type]


class TestGetOrderDetail:
    def test_summary_digest(self, db: DB) -> None:
        # Act
        detail = create_queries(db).get_order_detail(ORDER_A)

        # Assert
        assert detail["timezone"] == "America/Mexico_City"
        assert detail["order"]["gross"]["display"] == "1100.00"
        assert detail["order"]["processed_local_date"] == "2026-02-25"
        raw = detail["raw"]
        assert raw["id"] == ORDER_A
        assert raw["refunds_count"] == 1
        assert raw["money"]["subtotal"] == {"amount": "1000.00", "currency_code": "MXN"}

    def test_full_payload(self, db: DB) -> None:
        detail = create_queries(db).get_order_detail(ORDER_B, raw="full")

        assert detail["raw"]["currentTotalTaxSet"]["shopMoney"]["amount"] == "80.00"

    def test_excluded_order_is_returned(self, db: DB) -> None:
        detail = create_queries(db).get_order_detail(ORDER_C)

        assert detail["order"]["excluded"] is True
        assert detail["order"]["excluded_reason"] == "cancelled"

    def test_unknown_order_raises(self, db: DB) -> None:
        with pytest.raises(OrderNotFoundError, match="Order not found"):
            create_queries(db).get_order_detail("gid://shopify/Order/404")

    def test_invalid_raw_mode_raises(self, db: DB) -> None:
        with pytest.raises(InvalidQueryError):
            create_queries(db).get_order_detail(ORDER_A, raw="everything")


class TestGetReconcile:
    def test_counts_and_top_refunded(self, db: DB) -> None:
        # Act
        report = create_queries(db).get_reconcile(CURRENT)

        # Assert
        assert report["counts"] == {
            "total_in_range": 3,
            "excluded_in_range": 1,
            "included_in_range": 2,
        }
        assert report["totals"]["net"]["display"] == "1400.00"
        signals = report["quality_signals"]
        assert signals["orders_with_negative_net"] == 0
        assert signals["orders_with_refunds_over_gross"] == 0
        assert [o["shopify_order_id"] for o in signals["top_refunded_orders"]] == [ORDER_A]

    def test_over_refunded_order_is_flagged(self, db: DB) -> None:
        # Setup
        save_node(
            db,
            order_node(
                order_id=ORDER_E,
                processed_at="2026-02-26T18:00:00Z",
                subtotal="100.00",
                shipping="0.00",
                refunds=[refund_node(total="150.00")],
            ),
        )

        # Act
        report = create_queries(db).get_reconcile(CURRENT, include_excluded=True)

        # Assert
        signals = report["quality_signals"]
        assert signals["orders_with_negative_net"] == 1
        assert signals["orders_with_refunds_over_gross"] == 1
        assert [o["shopify_order_id"] for o in signals["top_refunded_orders"]] == [
            ORDER_A,
            ORDER_E,
        ]
        assert report["counts"]["excluded_in_range"] == 2


class TestGetSyncStatus:
    def test_before_bootstrap(self) -> None:
        status = create_queries(create_db()).get_sync_status()

        assert status["config"] is None
        assert status["sync_state"] is None
        assert status["recent_runs"] == []
        assert status["counts"] == {
            "raw_orders": 0,
            "order_income": 0,
            "excluded_orders": 0,
        }

    def test_long_errors_are_truncated(self, db: DB) -> None:
        # Setup
        run_id = db.start_run_log(NOW)
        db.finish_run_log(
            run_id,
            status=RUN_STATUS_FAILURE,
            finished_at=NOW + timedelta(seconds=5),
            progress=RunProgress(),
            error="x" * 600,
        )

        # Act
        status = create_queries(db).get_sync_status()

        # Assert
        assert status["config"]["currency_code"] == "MXN"
        assert status["counts"]["order_income"] == 4
        [run] = status["recent_runs"]
        assert run["status"] == RUN_STATUS_FAILURE
        assert run["error"] == "x" * 500 + "..."
        assert run["finished_at"] == "2026-02-25T18:30:05+00:00"
