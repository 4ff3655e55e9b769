"""Pytest configuration and fixtures for the catalog API."""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from catalog_api.crud.memory_store import InMemoryPartitionedStore
from catalog_api.exceptions import AssetNotFoundError
from catalog_api.routes.product_route import get_catalog_service
from catalog_api.services.assets import AssetReferenceResolver, AssetStore, PendingAssetRegistry
from catalog_api.services.catalog_service import CatalogService

ASSET_BASE_URL = "https://assets.test/product-images/"


class FakeAssetStore(AssetStore):
    """Blob store kept in a dict so tests never reach Azure."""

    def __init__(self):
        self.blobs = {}

    async def upload(self, file_name: str, data: bytes) -> str:
        url = f"{ASSET_BASE_URL}{uuid.uuid4().hex}_{file_name}"
        self.blobs[url] = data
        return url

    async def exists(self, url: str) -> bool:
        return url in self.blobs

    async def download(self, url: str) -> bytes:
        try:
            return self.blobs[url]
        except KeyError:
            raise AssetNotFoundError(f"Image '{url}' not found") from None


@pytest.fixture()
def store():
    return InMemoryPartitionedStore()


@pytest.fixture()
def asset_store():
    return FakeAssetStore()


@pytest.fixture()
def registry():
    return PendingAssetRegistry(ttl_seconds=900)


@pytest.fixture()
def resolver(asset_store, registry):
    return AssetReferenceResolver(asset_store, registry)


@pytest.fixture()
def service(store, resolver):
    return CatalogService(store=store, resolver=resolver, partition_key="Product", collision_retries=1)


@pytest_asyncio.fixture()
async def client(service):
    """Return an HTTPX async client pointing at the FastAPI app."""
    from function_app import app

    app.dependency_overrides[get_catalog_service] = lambda: service
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://testserver",
        ) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_catalog_service, None)
