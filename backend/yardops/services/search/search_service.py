"""
Order listing and search.

Listings are always scoped to a date window. Short or empty terms run a plain
range query against the database. Longer terms run a fuzzy query against the
order index, and fall back to a SQL substring search when the index is
disabled or unreachable.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from elasticsearch.exceptions import ApiError, TransportError
from sqlalchemy.ext.asyncio import AsyncSession

from yardops.core.config import get_settings
from yardops.core.logging import get_logger, log_performance
from yardops.core.timeutils import resolve_window
from yardops.database.models.order import Order
from yardops.services.orders.enums import OrderStatus
from yardops.services.orders.repository import OrderRepository, OrderView
from yardops.services.search.elasticsearch_client import (
    ElasticsearchClient,
    ElasticsearchError,
    get_elasticsearch_client,
)
from yardops.services.search.order_index import SEARCH_FIELDS, OrderIndex, OrderIndexError

logger = get_logger(__name__)

MIN_TERM_LENGTH = 2

# Dashboard listings by name. The ongoing escalations view keeps escalated
# orders that are still being worked.
ORDER_VIEWS: dict[str, OrderView] = {
    "placed": OrderView(frozenset({OrderStatus.PLACED})),
    "customerApproved": OrderView(frozenset({OrderStatus.CUSTOMER_APPROVED})),
    "yardProcessing": OrderView(frozenset({OrderStatus.YARD_PROCESSING})),
    "inTransit": OrderView(frozenset({OrderStatus.IN_TRANSIT})),
    "cancelled": OrderView(frozenset({OrderStatus.ORDER_CANCELLED})),
    "refunded": OrderView(frozenset({OrderStatus.REFUNDED})),
    "disputed": OrderView(frozenset({OrderStatus.DISPUTE})),
    "fulfilled": OrderView(frozenset({OrderStatus.ORDER_FULFILLED})),
    "overallEscalations": OrderView(escalated=True),
    "ongoingEscalations": OrderView(
        frozenset(
            {
                OrderStatus.CUSTOMER_APPROVED,
                OrderStatus.YARD_PROCESSING,
                OrderStatus.IN_TRANSIT,
                OrderStatus.ESCALATION,
            }
        ),
        escalated=True,
    ),
}


class SearchError(Exception):
    """Base exception for search operations."""

    def __init__(self, message: str, code: str = "SEARCH_ERROR", **context):
        super().__init__(message)
        self.code = code
        self.context = context


class SearchQueryError(SearchError):
    """Exception raised for invalid listing parameters."""

    def __init__(self, message: str, **context):
        super().__init__(message, code="INVALID_QUERY", **context)


@dataclass
class OrderPage:
    orders: Sequence[Order]
    total_pages: int
    total_orders: int
    current_page: int
    start: datetime
    end: datetime


def clamp_paging(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    """
    Normalise paging parameters.

    Example:
        >>> clamp_paging(0, 500)
        (1, 100)
    """
    settings = get_settings()
    page = max(1, page or 1)
    limit = limit or settings.search_default_limit
    limit = min(max(1, limit), settings.search_max_limit)
    return page, limit


def total_pages(total: int, limit: int) -> int:
    return max(1, math.ceil(total / limit))


def view_filters(view: Optional[OrderView]) -> list[dict[str, Any]]:
    """Index filter clauses equivalent to the repository's view conditions."""
    if view is None:
        return []
    filters: list[dict[str, Any]] = []
    if view.statuses:
        filters.append({"terms": {"orderStatus": sorted(s.value for s in view.statuses)}})
    if view.escalated:
        filters.append({"term": {"escalated": True}})
    return filters


def build_fuzzy_query(
    term: str, start: datetime, end: datetime, view: Optional[OrderView] = None
) -> dict[str, Any]:
    """Bool query matching ``term`` fuzzily or as a prefix within the window."""
    return {
        "bool": {
            "should": [
                {
                    "multi_match": {
                        "query": term,
                        "fields": list(SEARCH_FIELDS),
                        "fuzziness": 1,
                        "prefix_length": 1,
                    }
                },
                {
                    "multi_match": {
                        "query": term,
                        "type": "bool_prefix",
                        "fields": [
                            f"{name}{suffix}"
                            for name in SEARCH_FIELDS
                            for suffix in ("", "._2gram", "._3gram")
                        ],
                    }
                },
            ],
            "minimum_should_match": 1,
            "filter": [
                {
                    "range": {
                        "orderDate": {"gte": start.isoformat(), "lt": end.isoformat()}
                    }
                },
                *view_filters(view),
            ],
        }
    }


class OrderSearchService:
    """Paged order retrieval for a time window, with optional fuzzy search."""

    def __init__(
        self,
        session: AsyncSession,
        es_client: Optional[ElasticsearchClient] = None,
        index_name: Optional[str] = None,
    ):
        self.repository = OrderRepository(session)
        self._es_client = es_client
        self._index_name = index_name or get_settings().elasticsearch_index

    async def list_orders(
        self,
        *,
        start: Optional[str] = None,
        end: Optional[str] = None,
        month: Optional[str] = None,
        year: Optional[int] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search_term: Optional[str] = None,
        view: Optional[str] = None,
    ) -> OrderPage:
        """
        List orders in a window, optionally filtered by a search term.

        ``view`` names an entry of ``ORDER_VIEWS`` narrowing the listing to a
        status group or to escalated orders.

        Raises:
            SearchQueryError: If the window parameters or view cannot be parsed
        """
        order_view = None
        if view is not None:
            order_view = ORDER_VIEWS.get(view)
            if order_view is None:
                raise SearchQueryError(f"Unknown order view: {view}", view=view)

        try:
            window_start, window_end = resolve_window(start, end, month, year)
        except ValueError as e:
            raise SearchQueryError(str(e), start=start, end=end, month=month, year=year) from e

        page, limit = clamp_paging(page, limit)
        offset = (page - 1) * limit
        term = (search_term or "").strip()

        with log_performance(
            logger, "order_listing", term_length=len(term), page=page, view=view
        ):
            if len(term) < MIN_TERM_LENGTH:
                orders = await self.repository.list_window(
                    window_start, window_end, offset, limit, view=order_view
                )
                total = await self.repository.count_window(
                    window_start, window_end, view=order_view
                )
            else:
                orders, total = await self._search(
                    term, window_start, window_end, offset, limit, order_view
                )

        return OrderPage(
            orders=orders,
            total_pages=total_pages(total, limit),
            total_orders=total,
            current_page=page,
            start=window_start,
            end=window_end,
        )

    async def _search(
        self,
        term: str,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
        view: Optional[OrderView] = None,
    ) -> tuple[Sequence[Order], int]:
        try:
            client = await self._get_client()
            query = build_fuzzy_query(term, start, end, view)
            response = await client.client.search(
                index=self._index_name,
                query=query,
                sort=[{"_score": "desc"}, {"orderDate": "desc"}],
                from_=offset,
                size=limit,
                track_total_hits=True,
                source=False,
            )
            hits = response["hits"]
            order_nos = [hit["_id"] for hit in hits.get("hits", [])]
            total = (hits.get("total") or {}).get("value")
            if total is None:
                count = await client.client.count(index=self._index_name, query=query)
                total = count["count"]
        except (ElasticsearchError, ApiError, TransportError) as e:
            logger.warning(
                "Search index unavailable, falling back to SQL search",
                term=term,
                error=str(e),
            )
            return await self.repository.search_window(
                term, start, end, offset, limit, view=view
            )

        orders = await self.repository.get_orders_by_nos(order_nos)
        logger.debug("Order search executed", term=term, total=total, returned=len(orders))
        return orders, int(total)

    async def _get_client(self) -> ElasticsearchClient:
        if self._es_client is None:
            self._es_client = await get_elasticsearch_client()
        return self._es_client


async def reindex_order(order: Order, es_client: Optional[ElasticsearchClient] = None) -> bool:
    """
    Push one order to the search index.

    Returns False when the index is disabled or the write failed; the SQL
    fallback keeps search working until the next successful write.
    """
    if not get_settings().elasticsearch_enabled:
        return False
    try:
        client = es_client or await get_elasticsearch_client()
        await OrderIndex(client).index_order(order)
    except (ElasticsearchError, OrderIndexError, ApiError, TransportError) as e:
        logger.warning("Order reindex failed", order_no=order.order_no, error=str(e))
        return False
    return True
