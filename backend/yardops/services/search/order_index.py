"""
Order search index mapping and document management.

Each order is one document keyed by order number. Yard fields are flattened
into arrays so a match on any yard's tracking number finds the order.
Searchable text fields use ``search_as_you_type`` so the same fields serve
both fuzzy matching and prefix autocomplete.
"""

from typing import Any, Sequence

from elasticsearch.exceptions import ApiError, NotFoundError, TransportError
from elasticsearch.helpers import async_bulk

from yardops.core.config import get_settings
from yardops.core.logging import get_logger
from yardops.database.models.order import Order
from yardops.services.search.elasticsearch_client import ElasticsearchClient

logger = get_logger(__name__)

ORDER_FIELDS = (
    ("orderNo", "order_no"),
    ("customerName", "customer_name"),
    ("fName", "f_name"),
    ("lName", "l_name"),
    ("phone", "phone"),
    ("email", "email"),
    ("vin", "vin"),
    ("desc", "description"),
)

YARD_FIELDS = (
    ("yardName", "yard_name"),
    ("stockNo", "stock_no"),
    ("trackingNo", "tracking_no"),
    ("customerTrackingNumberReplacement", "customer_tracking_number_replacement"),
    ("yardTrackingNumber", "yard_tracking_number"),
    ("returnTrackingCust", "return_tracking_cust"),
)

SEARCH_FIELDS = tuple(name for name, _ in ORDER_FIELDS + YARD_FIELDS)


class OrderIndexError(Exception):
    """Base exception for order index operations."""

    def __init__(self, message: str, code: str = "INDEX_ERROR", **context):
        super().__init__(message)
        self.code = code
        self.context = context


def build_order_document(order: Order) -> dict[str, Any]:
    """Flatten an order and its yards into a search document."""
    document: dict[str, Any] = {
        name: getattr(order, attr) or "" for name, attr in ORDER_FIELDS
    }
    for name, attr in YARD_FIELDS:
        document[name] = [
            getattr(yard, attr) for yard in order.yards if getattr(yard, attr)
        ]
    document["orderDate"] = order.order_date.isoformat()
    document["orderStatus"] = order.order_status.value
    document["escalated"] = any(yard.esc_ticked == "Yes" for yard in order.yards)
    return document


class OrderIndex:
    """Order search index management."""

    MAPPING: dict[str, Any] = {
        "properties": {
            **{name: {"type": "search_as_you_type"} for name in SEARCH_FIELDS},
            "orderDate": {
                "type": "date",
                "format": "strict_date_optional_time||epoch_millis",
            },
            "orderStatus": {"type": "keyword"},
            "escalated": {"type": "boolean"},
        }
    }

    SETTINGS: dict[str, Any] = {
        "number_of_shards": 1,
        "number_of_replicas": 1,
        "refresh_interval": "1s",
    }

    def __init__(self, client: ElasticsearchClient, index_name: str | None = None):
        """
        Initialize order index manager.

        Args:
            client: Connected Elasticsearch client
            index_name: Index name (defaults to settings)
        """
        self._client = client
        self._index_name = index_name or get_settings().elasticsearch_index

    @property
    def index_name(self) -> str:
        return self._index_name

    async def create_index(self) -> None:
        await self._client.create_index(self._index_name, self.MAPPING, self.SETTINGS)

    async def index_order(self, order: Order) -> None:
        """
        Index or replace one order document.

        Raises:
            OrderIndexError: If indexing fails
        """
        try:
            await self._client.client.index(
                index=self._index_name,
                id=order.order_no,
                document=build_order_document(order),
            )
        except (ApiError, TransportError) as e:
            logger.error(
                "Failed to index order",
                index=self._index_name,
                order_no=order.order_no,
                error=str(e),
            )
            raise OrderIndexError(
                "Failed to index order",
                code="INDEX_DOCUMENT_FAILED",
                order_no=order.order_no,
                error=str(e),
            ) from e

        logger.debug("Order indexed", index=self._index_name, order_no=order.order_no)

    async def delete_order(self, order_no: str) -> None:
        try:
            await self._client.client.delete(index=self._index_name, id=order_no)
        except NotFoundError:
            logger.debug("Order not in index", order_no=order_no)

    async def bulk_index_orders(self, orders: Sequence[Order]) -> dict[str, Any]:
        """
        Bulk index orders, typically for a full reindex.

        Returns:
            Dictionary with total, success and failed counts
        """
        actions = [
            {
                "_index": self._index_name,
                "_id": order.order_no,
                "_source": build_order_document(order),
            }
            for order in orders
        ]
        try:
            success, failed = await async_bulk(
                self._client.client, actions, raise_on_error=False
            )
        except (ApiError, TransportError) as e:
            logger.error("Bulk index operation failed", total=len(actions), error=str(e))
            raise OrderIndexError(
                "Bulk index operation failed",
                code="BULK_INDEX_ERROR",
                total_documents=len(actions),
                error=str(e),
            ) from e

        failed_count = len(failed) if failed else 0
        logger.info(
            "Bulk index operation completed",
            index=self._index_name,
            total=len(actions),
            success=success,
            failed=failed_count,
        )
        return {"total": len(actions), "success": success, "failed": failed_count}
