"""
Elasticsearch client for order search.

Wraps AsyncElasticsearch with connection management, health checks and
index helpers. A single client is shared per process through
get_elasticsearch_client().
"""

from typing import Any, Optional

from elasticsearch import AsyncElasticsearch, ConnectionError, TransportError
from elasticsearch.exceptions import ApiError, AuthenticationException, ConnectionTimeout

from yardops.core.config import get_settings
from yardops.core.logging import get_logger

logger = get_logger(__name__)


class ElasticsearchError(Exception):
    """Base exception for Elasticsearch operations."""

    def __init__(self, message: str, code: str = "ES_ERROR", **context):
        super().__init__(message)
        self.code = code
        self.context = context


class ElasticsearchConnectionError(ElasticsearchError):
    """Exception raised when Elasticsearch is disabled or unreachable."""

    def __init__(self, message: str, **context):
        super().__init__(message, code="ES_CONNECTION_ERROR", **context)


class ElasticsearchIndexError(ElasticsearchError):
    """Exception raised for index operation failures."""

    def __init__(self, message: str, **context):
        super().__init__(message, code="ES_INDEX_ERROR", **context)


class ElasticsearchClient:
    """
    Async Elasticsearch client with connection management and health checks.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_retries: int = 1,
        request_timeout: Optional[int] = None,
    ):
        """
        Initialize Elasticsearch client.

        Args:
            url: Elasticsearch connection URL (defaults to settings)
            max_retries: Transport level retries per request
            request_timeout: Request timeout in seconds (defaults to settings)
        """
        settings = get_settings()
        self._url = url or settings.elasticsearch_url
        self._max_retries = max_retries
        self._request_timeout = request_timeout or settings.elasticsearch_timeout
        self._client: Optional[AsyncElasticsearch] = None
        self._connected = False

    async def connect(self) -> None:
        """
        Establish connection to Elasticsearch cluster.

        Raises:
            ElasticsearchConnectionError: If connection fails
        """
        if self._connected and self._client:
            return

        self._client = AsyncElasticsearch(
            hosts=[self._url],
            max_retries=self._max_retries,
            retry_on_timeout=False,
            request_timeout=self._request_timeout,
        )
        try:
            health = await self._client.cluster.health()
        except AuthenticationException as e:
            logger.error("Elasticsearch authentication failed", url=self._url, error=str(e))
            raise ElasticsearchConnectionError(
                "Authentication failed", url=self._url, error=str(e)
            ) from e
        except (ConnectionError, ConnectionTimeout, TransportError) as e:
            logger.error("Failed to connect to Elasticsearch", url=self._url, error=str(e))
            raise ElasticsearchConnectionError(
                "Connection failed", url=self._url, error=str(e)
            ) from e

        self._connected = True
        logger.info(
            "Elasticsearch connection established",
            cluster_name=health.get("cluster_name"),
            status=health.get("status"),
        )

    async def disconnect(self) -> None:
        """Close Elasticsearch connection and cleanup resources."""
        if not self._client:
            return
        try:
            await self._client.close()
            logger.info("Elasticsearch connection closed")
        except (ConnectionError, TransportError) as e:
            logger.warning("Error closing Elasticsearch connection", error=str(e))
        finally:
            self._connected = False
            self._client = None

    async def health_check(self) -> dict[str, Any]:
        """
        Check Elasticsearch cluster health.

        Raises:
            ElasticsearchConnectionError: If health check fails
        """
        try:
            health = await self.client.cluster.health()
        except (ConnectionError, ConnectionTimeout, TransportError) as e:
            logger.error("Elasticsearch health check failed", error=str(e))
            raise ElasticsearchConnectionError("Health check failed", error=str(e)) from e

        return {
            "status": health.get("status"),
            "cluster_name": health.get("cluster_name"),
            "number_of_nodes": health.get("number_of_nodes"),
            "timed_out": health.get("timed_out", False),
        }

    async def index_exists(self, index_name: str) -> bool:
        try:
            return bool(await self.client.indices.exists(index=index_name))
        except (ConnectionError, TransportError) as e:
            raise ElasticsearchConnectionError(
                "Failed to check index existence", index=index_name, error=str(e)
            ) from e

    async def create_index(
        self,
        index_name: str,
        mappings: dict[str, Any],
        settings: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Create index with mappings and settings unless it already exists.

        Raises:
            ElasticsearchIndexError: If index creation fails
        """
        if await self.index_exists(index_name):
            logger.debug("Index already exists", index=index_name)
            return

        try:
            await self.client.indices.create(
                index=index_name, mappings=mappings, settings=settings or {}
            )
        except ApiError as e:
            logger.error(
                "Failed to create index",
                index=index_name,
                error=str(e),
                status_code=e.status_code,
            )
            raise ElasticsearchIndexError(
                "Failed to create index",
                index=index_name,
                error=str(e),
                status_code=e.status_code,
            ) from e

        logger.info(
            "Index created successfully",
            index=index_name,
            mappings_properties_count=len(mappings.get("properties", {})),
        )

    @property
    def client(self) -> AsyncElasticsearch:
        """
        Get underlying AsyncElasticsearch client.

        Raises:
            ElasticsearchConnectionError: If client not connected
        """
        if not self._client:
            raise ElasticsearchConnectionError("Client not connected")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected and self._client is not None


_elasticsearch_client: Optional[ElasticsearchClient] = None


async def get_elasticsearch_client() -> ElasticsearchClient:
    """
    Get or create the shared Elasticsearch client.

    Raises:
        ElasticsearchConnectionError: If search is disabled or the cluster
            cannot be reached
    """
    global _elasticsearch_client

    if not get_settings().elasticsearch_enabled:
        raise ElasticsearchConnectionError("Elasticsearch is disabled in configuration")

    if _elasticsearch_client is None:
        _elasticsearch_client = ElasticsearchClient()
    if not _elasticsearch_client.is_connected:
        await _elasticsearch_client.connect()

    return _elasticsearch_client


async def close_elasticsearch_client() -> None:
    """Close the shared Elasticsearch client connection."""
    global _elasticsearch_client

    if _elasticsearch_client:
        await _elasticsearch_client.disconnect()
        _elasticsearch_client = None
