from azure.core import MatchConditions
from azure.cosmos.exceptions import CosmosHttpResponseError
from azure.cosmos.aio import ContainerProxy
from typing import AsyncIterator, Optional

from pydantic import ValidationError

from catalog_api.crud.partitioned_store import PartitionedStore
from catalog_api.models.product import Product

from catalog_api.exceptions import (
    ProductNotFoundError,
    ProductAlreadyExistsError,
    DatabaseError,
    PreconditionFailedError,
)

from catalog_api.logging_config import get_child_logger, tracer

logger = get_child_logger("crud.product")

SCAN_QUERY = "SELECT * FROM c WHERE c.partitionKey = @partitionKey"
ROW_KEY_QUERY = "SELECT VALUE c.rowKey FROM c WHERE c.partitionKey = @partitionKey"


def _record_error(span, e: Exception) -> None:
    span.set_attribute("error", True)
    if isinstance(e, CosmosHttpResponseError):
        span.set_attribute("error.type", "cosmos_http_error")
        span.set_attribute("error.status_code", e.status_code)
    else:
        span.set_attribute("error.type", type(e).__name__)


def _database_error(action: str, e: Exception, **context) -> DatabaseError:
    if isinstance(e, CosmosHttpResponseError):
        logger.error(
            f"Cosmos DB error during {action}",
            extra={"status_code": e.status_code, "cosmos_message": e.message, **context},
            exc_info=True,
        )
        return DatabaseError(
            f"Cosmos DB error during {action}: Status Code {e.status_code}, Message: {e.message}",
            original_exception=e,
        )
    logger.error(
        f"Unexpected error during {action}",
        extra={"error_type": type(e).__name__, **context},
        exc_info=True,
    )
    return DatabaseError(
        "An unexpected error occurred during database operation.",
        original_exception=e,
    )


def _not_found(row_key: str, partition_key: str) -> ProductNotFoundError:
    logger.warning(
        "Product not found",
        extra={"product_id": row_key, "partition_key": partition_key},
    )
    return ProductNotFoundError(
        f"Product with ID '{row_key}' and partition '{partition_key}' not found"
    )


class CosmosPartitionedStore(PartitionedStore):
    """
    Partitioned store backed by a Cosmos DB container.

    The container is partitioned on ``/partitionKey`` and each document's
    ``id`` is the product's row key.
    """

    def __init__(self, container: ContainerProxy):
        self.container = container

    async def get(self, partition_key: str, row_key: str) -> Product:
        """
        Retrieve a product by its row key.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            DatabaseError: If a database operation fails
        """
        with tracer.start_as_current_span("store_get") as span:
            span.set_attribute("product.id", row_key)
            span.set_attribute("product.partition_key", partition_key)

            try:
                item = await self.container.read_item(item=row_key, partition_key=partition_key)
                return Product.model_validate(item)
            except CosmosHttpResponseError as e:
                _record_error(span, e)
                if e.status_code == 404:
                    raise _not_found(row_key, partition_key) from e
                raise _database_error(
                    "product retrieval", e, product_id=row_key, partition_key=partition_key
                ) from e
            except Exception as e:
                _record_error(span, e)
                raise _database_error(
                    "product retrieval", e, product_id=row_key, partition_key=partition_key
                ) from e

    async def scan_partition(self, partition_key: str) -> AsyncIterator[Product]:
        """
        Yield every product in a partition, skipping documents that do not
        match the product schema.
        """
        # Not made current: the generator suspends between items.
        span = tracer.start_span("store_scan_partition")
        span.set_attribute("partition_key", partition_key)
        count = 0
        try:
            query_iterator = self.container.query_items(
                query=SCAN_QUERY,
                parameters=[{"name": "@partitionKey", "value": partition_key}],
                partition_key=partition_key,
            )
            async for item in query_iterator:
                try:
                    product = Product.model_validate(item)
                except ValidationError as e:
                    logger.debug(f"Pydantic validation errors: {e.errors()}")
                    continue
                count += 1
                yield product
        except Exception as e:
            _record_error(span, e)
            raise _database_error("partition scan", e, partition_key=partition_key) from e
        finally:
            span.set_attribute("products.count", count)
            span.end()

    async def iter_row_keys(self, partition_key: str) -> AsyncIterator[str]:
        span = tracer.start_span("store_iter_row_keys")
        span.set_attribute("partition_key", partition_key)
        try:
            query_iterator = self.container.query_items(
                query=ROW_KEY_QUERY,
                parameters=[{"name": "@partitionKey", "value": partition_key}],
                partition_key=partition_key,
            )
            async for row_key in query_iterator:
                if isinstance(row_key, str):
                    yield row_key
        except Exception as e:
            _record_error(span, e)
            raise _database_error("row key scan", e, partition_key=partition_key) from e
        finally:
            span.end()

    async def insert(self, product: Product) -> Product:
        """
        Insert a product, failing if its row key is already taken.

        Raises:
            ProductAlreadyExistsError: If a product with the same row key exists
            DatabaseError: If a database operation fails
        """
        with tracer.start_as_current_span("store_insert") as span:
            span.set_attribute("product.id", product.row_key)
            span.set_attribute("product.partition_key", product.partition_key)

            try:
                result = await self.container.create_item(body=product.to_document())
                return Product.model_validate(result)
            except CosmosHttpResponseError as e:
                _record_error(span, e)
                if e.status_code == 409:
                    logger.warning(
                        "Product already exists",
                        extra={"product_id": product.row_key, "partition_key": product.partition_key},
                    )
                    raise ProductAlreadyExistsError(
                        f"Product with ID '{product.row_key}' already exists in partition '{product.partition_key}'"
                    ) from e
                raise _database_error(
                    "product creation", e,
                    product_id=product.row_key, partition_key=product.partition_key,
                ) from e
            except Exception as e:
                _record_error(span, e)
                raise _database_error(
                    "product creation", e,
                    product_id=product.row_key, partition_key=product.partition_key,
                ) from e

    async def replace(self, product: Product, if_match: Optional[str] = None) -> Product:
        """
        Overwrite every stored field of an existing product.

        Without ``if_match`` the last writer wins; with it, the replace only
        succeeds while the stored ETag still matches.

        Raises:
            ProductNotFoundError: If the product doesn't exist
            PreconditionFailedError: If the ETag doesn't match (concurrent update)
            DatabaseError: If a database operation fails
        """
        with tracer.start_as_current_span("store_replace") as span:
            span.set_attribute("product.id", product.row_key)
            span.set_attribute("product.partition_key", product.partition_key)
            span.set_attribute("has_etag", if_match is not None)

            options = {}
            if if_match is not None:
                options = {"etag": if_match, "match_condition": MatchConditions.IfNotModified}

            try:
                result = await self.container.replace_item(
                    item=product.row_key, body=product.to_document(), **options
                )
                return Product.model_validate(result)
            except CosmosHttpResponseError as e:
                _record_error(span, e)
                if e.status_code == 404:
                    raise _not_found(product.row_key, product.partition_key) from e
                if e.status_code == 412:
                    raise PreconditionFailedError(
                        f"Product with ID '{product.row_key}' has been modified since last retrieved (ETag mismatch)."
                    ) from e
                raise _database_error(
                    "product update", e,
                    product_id=product.row_key, partition_key=product.partition_key,
                ) from e
            except Exception as e:
                _record_error(span, e)
                raise _database_error(
                    "product update", e,
                    product_id=product.row_key, partition_key=product.partition_key,
                ) from e

    async def delete(self, partition_key: str, row_key: str) -> None:
        with tracer.start_as_current_span("store_delete") as span:
            span.set_attribute("product.id", row_key)
            span.set_attribute("product.partition_key", partition_key)

            try:
                await self.container.delete_item(item=row_key, partition_key=partition_key)
            except CosmosHttpResponseError as e:
                _record_error(span, e)
                if e.status_code == 404:
                    raise _not_found(row_key, partition_key) from e
                raise _database_error(
                    "product deletion", e, product_id=row_key, partition_key=partition_key
                ) from e
            except Exception as e:
                _record_error(span, e)
                raise _database_error(
                    "product deletion", e, product_id=row_key, partition_key=partition_key
                ) from e
