"""
Catalog settings loaded from environment variables.

Connection settings are optional at import time; the clients in
``catalog_api.db`` raise when they are needed but missing.
"""

import os
from typing import Optional


class Settings:
    """Application settings loaded from environment variables."""

    # Cosmos DB
    COSMOSDB_ENDPOINT: Optional[str] = os.getenv("COSMOSDB_ENDPOINT")
    COSMOSDB_DATABASE: str = os.getenv("COSMOSDB_DATABASE", "catalog")
    COSMOSDB_CONTAINER_PRODUCTS: str = os.getenv("COSMOSDB_CONTAINER_PRODUCTS", "products")

    # Catalog behaviour
    CATALOG_PARTITION_KEY: str = os.getenv("CATALOG_PARTITION_KEY", "Product")
    KEY_COLLISION_RETRIES: int = int(os.getenv("KEY_COLLISION_RETRIES", "1"))

    # Blob storage
    BLOB_ACCOUNT_URL: Optional[str] = os.getenv("BLOB_ACCOUNT_URL")
    BLOB_CONTAINER_IMAGES: str = os.getenv("BLOB_CONTAINER_IMAGES", "product-images")
    PENDING_ASSET_TTL_SECONDS: int = int(os.getenv("PENDING_ASSET_TTL_SECONDS", "900"))

    @property
    def cosmos_configured(self) -> bool:
        return bool(self.COSMOSDB_ENDPOINT)

    @property
    def blob_configured(self) -> bool:
        return bool(self.BLOB_ACCOUNT_URL)


settings = Settings()
