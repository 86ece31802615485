from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
import re
from typing import Any, Protocol, cast
import urllib.error
import urllib.request

import loguru
from loguru import logger
from pydantic import ValidationError

from shopincome.adapters.shopify.schemas import OrdersQueryData
from shopincome.core.errors import ShopIncomeError

DEFAULT_API_VERSION = "2025-04"
DEFAULT_TIMEOUT_SECONDS = 30.0

ORDERS_FOR_INCOME_QUERY = """
query OrdersForIncome($first: Int!, $after: String, $query: String) {
  orders(first: $first, after: $after, query: $query, sortKey: PROCESSED_AT) {
    pageInfo {
      hasNextPage
      endCursor
    }
    nodes {
      id
      processedAt
      cancelledAt
      test
      currentSubtotalPriceSet { shopMoney { amount currencyCode } }
      currentShippingPriceSet { shopMoney { amount currencyCode } }
      currentTotalTaxSet { shopMoney { amount currencyCode } }
      currentTotalDiscountsSet { shopMoney { amount currencyCode } }
      refunds {
        id
        createdAt
        totalRefundedSet { shopMoney { amount currencyCode } }
        refundLineItems(first: 50) {
          edges {
            node {
              quantity
              subtotalSet { shopMoney { amount currencyCode } }
            }
          }
        }
      }
    }
  }
}
"""

_SCHEME_PATTERN = re.compile(r"^https?://")


class ShopifyClientError(ShopIncomeError):
    """Transport, HTTP or GraphQL failure talking to the Shopify Admin API."""


@dataclass
class OrdersPage:
    """One page of raw order nodes plus the pagination cursor."""

    nodes: list[dict[str, Any]] = field(default_factory=list)
    has_next_page: bool = False
    end_cursor: str | None = None


class OrdersSource(Protocol):
    """Anything that can serve paginated order nodes to the sync processor."""

    def fetch_orders_page(
        self, query: str, first: int, after: str | None = None
    ) -> OrdersPage: ...


def normalize_shop_domain(domain: str) -> str:
    """Strip scheme and trailing slash so URLs are built consistently."""
    return _SCHEME_PATTERN.sub("", domain.strip()).rstrip("/")


class ShopifyClientLogger:
    """Handles all logging for ShopifyClient; never receives the access token."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def request_start(self, shop_domain: str, after: str | None, first: int) -> None:
        cursor_label = after or "initial"
        self._logger.bind(shop=shop_domain, cursor=cursor_label, first=first).debug(
            "Requesting orders page from {} (cursor: {})", shop_domain, cursor_label
        )

    def request_complete(self, shop_domain: str, node_count: int, has_next: bool) -> None:
        self._logger.bind(shop=shop_domain, nodes=node_count, has_next=has_next).debug(
            "Received {} orders from {} (more: {})", node_count, shop_domain, has_next
        )

    def graphql_error(self, shop_domain: str, message: str) -> None:
        self._logger.bind(shop=shop_domain).error(
            "Shopify GraphQL error from {}: {}", shop_domain, message
        )


class ShopifyClient:
    def __init__(
        self,
        *,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client_logger: ShopifyClientLogger | None = None,
    ) -> None:
        self._shop_domain = normalize_shop_domain(shop_domain)
        self._access_token = access_token
        self._api_version = api_version
        self._timeout_seconds = timeout_seconds
        self._logger = client_logger or ShopifyClientLogger()

    @property
    def shop_domain(self) -> str:
        return self._shop_domain

    @classmethod
    def from_env(cls) -> ShopifyClient:
        """Construct a ShopifyClient from environment variables.

        Required:
        - SHOPIFY_SHOP_DOMAIN
        - SHOPIFY_ADMIN_ACCESS_TOKEN
        Optional:
        - SHOPIFY_API_VERSION (defaults to 2025-04)
        - SHOPIFY_HTTP_TIMEOUT_SECONDS (defaults to 30)
        """
        shop_domain = cls._getenv_or_die("SHOPIFY_SHOP_DOMAIN")
        access_token = cls._getenv_or_die("SHOPIFY_ADMIN_ACCESS_TOKEN")
        api_version = os.getenv("SHOPIFY_API_VERSION", DEFAULT_API_VERSION)
        raw_timeout = os.getenv("SHOPIFY_HTTP_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
        try:
            timeout_seconds = float(raw_timeout)
        except ValueError as e:
            raise ShopifyClientError(
                f"Invalid SHOPIFY_HTTP_TIMEOUT_SECONDS={raw_timeout!r}"
            ) from e
        return cls(
            shop_domain=shop_domain,
            access_token=access_token,
            api_version=api_version,
            timeout_seconds=timeout_seconds,
        )

    @staticmethod
    def _getenv_or_die(name: str) -> str:
        value = os.getenv(name)
        if not value:
            raise ShopifyClientError(f"Missing required environment variable: {name}")
        return value

    def _graphql_url(self) -> str:
        return (
            f"https://{self._shop_domain}/admin/api/{self._api_version}/graphql.json"
        )

    def _parse_json_response(self, body: str) -> dict[str, Any]:
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError as e:
            raise ShopifyClientError(
                f"Failed to parse Shopify response as JSON ({self._shop_domain}): {e}"
            ) from e
        if not isinstance(parsed, dict):
            raise ShopifyClientError(
                f"Unexpected Shopify response shape ({self._shop_domain})"
            )
        return cast(dict[str, Any], parsed)

    @staticmethod
    def _first_error_message(errors: Any) -> str:
        if not isinstance(errors, list) or not errors:
            return str(errors)
        first = errors[0]
        if not isinstance(first, dict):
            return str(first)
        message = str(first.get("message", "unknown error"))
        path = first.get("path")
        if path:
            message = f"{message} path: {'.'.join(str(part) for part in path)}"
        return message

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload).encode("utf-8")
        req = urllib.request.Request(  # noqa: S310
            self._graphql_url(),
            data=data,
            headers={
                "Content-Type": "application/json",
                "X-Shopify-Access-Token": self._access_token,
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(  # noqa: S310 - external HTTPS
                req, timeout=self._timeout_seconds
            ) as resp:
                body = resp.read().decode("utf-8")
        except urllib.error.HTTPError as e:  # pragma: no cover - network-dependent
            err_body = e.read().decode("utf-8", "ignore")
            try:
                detail = self._first_error_message(json.loads(err_body).get("errors"))
            except (json.JSONDecodeError, AttributeError):
                detail = e.reason
            raise ShopifyClientError(f"Shopify GraphQL HTTP {e.code}: {detail}") from e
        except urllib.error.URLError as e:  # pragma: no cover - network-dependent
            raise ShopifyClientError(
                f"Network error calling Shopify ({self._shop_domain}): {e.reason}"
            ) from e
        except TimeoutError as e:  # pragma: no cover - network-dependent
            raise ShopifyClientError(
                f"Timed out calling Shopify ({self._shop_domain})"
            ) from e

        return self._parse_json_response(body)

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a GraphQL operation and return its ``data`` object.

        Raises:
            ShopifyClientError: On transport failure, GraphQL ``errors`` or a
                response without ``data``. Messages never include the token.
        """
        response = self._post({"query": query, "variables": variables or {}})
        errors = response.get("errors")
        if errors:
            message = self._first_error_message(errors)
            self._logger.graphql_error(self._shop_domain, message)
            raise ShopifyClientError(
                f"Shopify GraphQL error ({self._shop_domain}): {message}"
            )
        data = response.get("data")
        if data is None:
            raise ShopifyClientError(f"Shopify GraphQL empty data ({self._shop_domain})")
        return cast(dict[str, Any], data)

    def fetch_orders_page(
        self, query: str, first: int, after: str | None = None
    ) -> OrdersPage:
        """Fetch one page of orders matching a search ``query`` string."""
        self._logger.request_start(self._shop_domain, after, first)
        data = self.graphql(
            ORDERS_FOR_INCOME_QUERY,
            {"first": first, "after": after, "query": query},
        )
        try:
            parsed = OrdersQueryData.parse(data)
        except ValidationError as e:
            raise ShopifyClientError(
                f"Unexpected orders response shape ({self._shop_domain}): {e}"
            ) from e
        page = OrdersPage(
            nodes=parsed.orders.nodes,
            has_next_page=parsed.orders.page_info.has_next_page,
            end_cursor=parsed.orders.page_info.end_cursor,
        )
        self._logger.request_complete(
            self._shop_domain, len(page.nodes), page.has_next_page
        )
        return page
