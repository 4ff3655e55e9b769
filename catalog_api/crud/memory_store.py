import uuid
from typing import AsyncIterator, Dict, Optional, Tuple

from catalog_api.crud.partitioned_store import PartitionedStore
from catalog_api.exceptions import (
    PreconditionFailedError,
    ProductAlreadyExistsError,
    ProductNotFoundError,
)
from catalog_api.models.product import Product


class InMemoryPartitionedStore(PartitionedStore):
    """
    Dict-backed store for local development and tests.

    Scans iterate over a snapshot in insertion order, so a scan is stable
    while no writes happen and is not disturbed by writes that do.
    """

    def __init__(self):
        self._records: Dict[Tuple[str, str], dict] = {}

    def _stamp(self, product: Product) -> dict:
        document = product.to_document()
        document["_etag"] = uuid.uuid4().hex
        return document

    async def get(self, partition_key: str, row_key: str) -> Product:
        document = self._records.get((partition_key, row_key))
        if document is None:
            raise ProductNotFoundError(
                f"Product with ID '{row_key}' and partition '{partition_key}' not found"
            )
        return Product.model_validate(document)

    async def scan_partition(self, partition_key: str) -> AsyncIterator[Product]:
        snapshot = [doc for (pk, _), doc in self._records.items() if pk == partition_key]
        for document in snapshot:
            yield Product.model_validate(document)

    async def insert(self, product: Product) -> Product:
        key = (product.partition_key, product.row_key)
        if key in self._records:
            raise ProductAlreadyExistsError(
                f"Product with ID '{product.row_key}' already exists in partition '{product.partition_key}'"
            )
        self._records[key] = self._stamp(product)
        return Product.model_validate(self._records[key])

    async def replace(self, product: Product, if_match: Optional[str] = None) -> Product:
        key = (product.partition_key, product.row_key)
        current = self._records.get(key)
        if current is None:
            raise ProductNotFoundError(
                f"Product with ID '{product.row_key}' and partition '{product.partition_key}' not found"
            )
        if if_match is not None and current["_etag"] != if_match:
            raise PreconditionFailedError(
                f"Product with ID '{product.row_key}' has been modified since last retrieved (ETag mismatch)."
            )
        self._records[key] = self._stamp(product)
        return Product.model_validate(self._records[key])

    async def delete(self, partition_key: str, row_key: str) -> None:
        try:
            del self._records[(partition_key, row_key)]
        except KeyError:
            raise ProductNotFoundError(
                f"Product with ID '{row_key}' and partition '{partition_key}' not found"
            ) from None
