from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from catalog_api.models.product import Product


class PartitionedStore(ABC):
    """
    Key-value persistence over a partition key and a row key.

    Writes are single-record and last-writer-wins unless ``replace`` is
    given an ``if_match`` ETag. Implementations raise
    ``ProductNotFoundError``, ``ProductAlreadyExistsError``,
    ``PreconditionFailedError`` or a ``StoreUnavailableError`` subclass.
    """

    @abstractmethod
    async def get(self, partition_key: str, row_key: str) -> Product:
        ...

    @abstractmethod
    def scan_partition(self, partition_key: str) -> AsyncIterator[Product]:
        """Lazily yield every record of a partition. Each call starts a new scan."""
        ...

    async def iter_row_keys(self, partition_key: str) -> AsyncIterator[str]:
        async for product in self.scan_partition(partition_key):
            yield product.row_key

    @abstractmethod
    async def insert(self, product: Product) -> Product:
        ...

    @abstractmethod
    async def replace(self, product: Product, if_match: Optional[str] = None) -> Product:
        ...

    @abstractmethod
    async def delete(self, partition_key: str, row_key: str) -> None:
        ...
