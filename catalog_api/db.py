from typing import Optional
from azure.cosmos.aio import CosmosClient, ContainerProxy
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from enum import Enum

from catalog_api.config import settings
from catalog_api.logging_config import get_child_logger

logger = get_child_logger("db")


class ContainerType(str, Enum):
    PRODUCTS = "products"


_cosmos_client: Optional[CosmosClient] = None
_blob_client: Optional[BlobServiceClient] = None
_credential: Optional[DefaultAzureCredential] = None

CONTAINERS = {
    ContainerType.PRODUCTS: settings.COSMOSDB_CONTAINER_PRODUCTS,
}


def _ensure_credential() -> DefaultAzureCredential:
    global _credential
    if _credential is None:
        _credential = DefaultAzureCredential()
    return _credential


async def _ensure_cosmos_client() -> CosmosClient:
    global _cosmos_client
    if _cosmos_client is None:
        if not settings.cosmos_configured:
            raise ValueError("COSMOSDB_ENDPOINT environment variable must be set")
        logger.info("Creating CosmosDB client with DefaultAzureCredential")
        _cosmos_client = CosmosClient(settings.COSMOSDB_ENDPOINT, _ensure_credential())
    return _cosmos_client


async def _ensure_blob_client() -> BlobServiceClient:
    global _blob_client
    if _blob_client is None:
        if not settings.blob_configured:
            raise ValueError("BLOB_ACCOUNT_URL environment variable must be set")
        logger.info("Creating Blob Storage client with DefaultAzureCredential")
        _blob_client = BlobServiceClient(settings.BLOB_ACCOUNT_URL, credential=_ensure_credential())
    return _blob_client


async def get_container(container_type: ContainerType) -> ContainerProxy:
    container_name = CONTAINERS.get(container_type)
    if not container_name:
        raise ValueError(
            f"Container '{container_type}' not configured. "
            f"Valid options: {list(CONTAINERS.keys())}"
        )

    client = await _ensure_cosmos_client()
    database = client.get_database_client(settings.COSMOSDB_DATABASE)
    return database.get_container_client(container_name)


async def get_image_container() -> ContainerClient:
    client = await _ensure_blob_client()
    return client.get_container_client(settings.BLOB_CONTAINER_IMAGES)
